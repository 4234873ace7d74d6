"""
Access Gateway – turns a claimed token into a permission-filtered view.
"""

import logging
from datetime import datetime
from typing import Callable, FrozenSet, Iterable, Optional

from medshare.config import TOKEN_ALPHABET, TOKEN_LENGTH
from medshare.errors import Denied, Expired, Forbidden, NotFound
from medshare.models import AccessGrant, ScopedView, utcnow
from medshare.store import GrantStore
from medshare.tokens import is_well_formed, normalize_token

logger = logging.getLogger(__name__)


def filter_scopes(grant: AccessGrant,
                  requested: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Intersect *requested* with what the grant permits; None asks for everything."""
    if requested is None:
        return grant.scopes
    return grant.scopes & frozenset(s.strip() for s in requested if s and s.strip())


class AccessGateway:
    """Authorizes claimant reads and counts them."""

    def __init__(self, store: GrantStore, clock: Callable[[], datetime] = utcnow,
                 alphabet: str = TOKEN_ALPHABET, length: int = TOKEN_LENGTH):
        self.store = store
        self.clock = clock
        self.alphabet = alphabet
        self.length = length

    def _check(self, grant: AccessGrant, claimant_id: str, now: datetime) -> None:
        if grant.is_expired(now):
            self.store.deactivate_expired(grant.token, now)
            raise Expired()
        if not grant.active:
            raise Denied()
        if grant.claimant_id != claimant_id:
            raise Forbidden("This token is not claimed by you")

    def access(self, token: str, claimant_id: str,
               requested_scopes: Optional[Iterable[str]] = None) -> ScopedView:
        """
        Authorize one read of *token* by *claimant_id*.

        Scopes the grant does not carry are dropped from the view, never
        reported as errors. Only a successful read touches the counters.
        """
        token = normalize_token(token)
        if not is_well_formed(token, self.alphabet, self.length):
            raise NotFound("Invalid or expired token")

        now = self.clock()
        grant = self.store.get(token)
        if grant is None:
            raise NotFound("Invalid or expired token")
        self._check(grant, claimant_id, now)

        scopes = filter_scopes(grant, requested_scopes)
        updated = self.store.record_access(token, claimant_id, now)
        if updated is None:
            # Revoked or expired after the first read.
            current = self.store.get(token)
            if current is None:
                raise NotFound()
            self._check(current, claimant_id, now)
            raise Denied()

        logger.info("[access] Doctor %s read %s of patient %s via %s (count=%d)",
                    claimant_id, ",".join(sorted(scopes)) or "nothing",
                    updated.issuer_id, token, updated.access_count)
        return ScopedView(
            token=token,
            issuer_id=updated.issuer_id,
            claimant_id=claimant_id,
            scopes=scopes,
            access_count=updated.access_count,
            accessed_at=now,
            expires_at=updated.expires_at,
        )
