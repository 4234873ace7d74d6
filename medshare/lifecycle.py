"""
Grant Lifecycle Engine – issue, claim, revoke and expire access grants.

States: issued (unclaimed) -> claimed -> expired | revoked. Terminal
states are never left. Identities are always passed in explicitly.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from medshare.config import DEFAULT_PERMISSIONS, DEFAULT_TTL_HOURS, MAX_TTL_HOURS, SCOPES
from medshare.errors import (
    AlreadyClaimedByOther,
    ClaimConflict,
    DuplicateToken,
    Expired,
    Forbidden,
    GenerationExhausted,
    InvalidGrantRequest,
    NotFound,
    Revoked,
)
from medshare.identity import ProfileDirectory
from medshare.models import AccessGrant, IssueResult, utcnow
from medshare.store import GrantStore
from medshare.tokens import TokenGenerator, is_well_formed, normalize_token

logger = logging.getLogger(__name__)


def validate_permissions(permissions: Optional[Dict[str, bool]]) -> Dict[str, bool]:
    """Return a complete ``{scope: bool}`` map, rejecting unknown scope names."""
    if permissions is None:
        return dict(DEFAULT_PERMISSIONS)
    if not isinstance(permissions, dict):
        raise InvalidGrantRequest("permissions must be an object of booleans")
    unknown = set(permissions) - set(SCOPES)
    if unknown:
        raise InvalidGrantRequest(f"Unknown permissions: {', '.join(sorted(unknown))}")
    for scope, value in permissions.items():
        if not isinstance(value, bool):
            raise InvalidGrantRequest(f"Permission '{scope}' must be true or false")
    return {scope: bool(permissions.get(scope, False)) for scope in SCOPES}


def validate_ttl(ttl_hours) -> float:
    if isinstance(ttl_hours, bool) or not isinstance(ttl_hours, (int, float)):
        raise InvalidGrantRequest("ttl_hours must be a number")
    if not math.isfinite(ttl_hours) or ttl_hours <= 0 or ttl_hours > MAX_TTL_HOURS:
        raise InvalidGrantRequest(f"ttl_hours must be between 0 and {MAX_TTL_HOURS}")
    return float(ttl_hours)


class GrantLifecycle:
    """State machine over access grants, backed by a GrantStore."""

    def __init__(self, store: GrantStore, directory: ProfileDirectory,
                 generator: Optional[TokenGenerator] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.directory = directory
        self.generator = generator or TokenGenerator()
        self.clock = clock

    # ── Issue ────────────────────────────────────────────────────────

    def issue(self, issuer_id: str, ttl_hours=DEFAULT_TTL_HOURS,
              permissions: Optional[Dict[str, bool]] = None) -> IssueResult:
        """
        Give the patient a token to share.

        An unclaimed, unexpired grant of the same patient is returned as is
        (same token, same expiry, same permissions) instead of creating
        another one.
        """
        patient = self.directory.resolve_patient(issuer_id)
        ttl = validate_ttl(ttl_hours)
        perms = validate_permissions(permissions)
        now = self.clock()

        existing = self.store.find_active_unclaimed_by_issuer(issuer_id, now)
        if existing:
            logger.info("[issue] Returning existing active token %s for patient %s",
                        existing.token, patient.subject_id)
            return IssueResult(grant=existing, reused=True)

        expires_at = now + timedelta(hours=ttl)
        for token in self.generator.candidates(self.store.token_exists):
            grant = AccessGrant(
                token=token,
                issuer_id=issuer_id,
                claimant_id=None,
                permissions=perms,
                expires_at=expires_at,
                active=True,
                access_count=0,
                created_at=now,
                updated_at=now,
            )
            try:
                self.store.insert(grant)
            except DuplicateToken:
                logger.warning("[issue] Token %s taken between check and insert; retrying", token)
                continue
            logger.info("[issue] Generated access token %s for patient %s (expires %s)",
                        token, patient.subject_id, expires_at.isoformat())
            return IssueResult(grant=grant, reused=False)

        logger.error("[issue] Token generation exhausted for patient %s", issuer_id)
        raise GenerationExhausted()

    # ── Claim ────────────────────────────────────────────────────────

    def claim(self, token: str, claimant_id: str) -> AccessGrant:
        """Bind the doctor *claimant_id* to the grant behind *token*."""
        doctor = self.directory.resolve_doctor(claimant_id)
        token = normalize_token(token)
        if not is_well_formed(token, self.generator.alphabet, self.generator.length):
            raise NotFound("Invalid or expired token")

        now = self.clock()
        grant = self.store.get(token)
        if grant is None:
            raise NotFound("Invalid or expired token")
        if grant.is_expired(now):
            self.store.deactivate_expired(token, now)
            raise Expired()
        if not grant.active:
            raise Revoked()
        if grant.claimant_id == claimant_id:
            logger.info("[claim] Doctor %s re-presented token %s", doctor.subject_id, token)
            return grant
        if grant.claimant_id is not None:
            raise AlreadyClaimedByOther()

        try:
            claimed = self.store.claim_atomically(token, claimant_id, now)
        except ClaimConflict:
            logger.info("[claim] Doctor %s lost the race for token %s", doctor.subject_id, token)
            raise AlreadyClaimedByOther() from None

        logger.info("[claim] Doctor %s connected to patient %s via %s",
                    doctor.subject_id, claimed.issuer_id, token)
        return claimed

    # ── Revoke / expire ──────────────────────────────────────────────

    def revoke(self, token: str, issuer_id: str) -> None:
        """Deactivate a grant on behalf of the patient who issued it."""
        token = normalize_token(token)
        grant = self.store.get(token)
        if grant is None:
            raise NotFound()
        if grant.issuer_id != issuer_id:
            raise Forbidden("Only the issuing patient can revoke this token")
        if self.store.revoke(token, issuer_id, self.clock()):
            logger.info("[revoke] Patient %s revoked token %s", issuer_id, token)

    def sweep_expired(self) -> int:
        """Deactivate grants whose expiry has passed; returns how many changed."""
        count = self.store.sweep_expired(self.clock())
        if count:
            logger.info("[sweep] Deactivated %d expired grants", count)
        return count

    # ── Listings ─────────────────────────────────────────────────────

    def grants_for_issuer(self, issuer_id: str,
                          include_inactive: bool = False) -> List[AccessGrant]:
        return self.store.list_by_issuer(issuer_id, self.clock(), include_inactive)

    def grants_for_claimant(self, claimant_id: str) -> List[AccessGrant]:
        return self.store.list_by_claimant(claimant_id, self.clock())
