"""
Grant Store – durable access to the access_grants table.

Every state change is a single conditional UPDATE, so concurrent callers
are serialised by the database rather than by application code.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from medshare.database import access_grants as g
from medshare.database import profiles
from medshare.errors import ClaimConflict, DuplicateToken, Expired, NotFound, Revoked
from medshare.models import AccessGrant

logger = logging.getLogger(__name__)


def _to_grant(row) -> AccessGrant:
    return AccessGrant(
        token=row["token"],
        issuer_id=row["issuer_id"],
        claimant_id=row["claimant_id"],
        permissions=dict(row["permissions"] or {}),
        expires_at=row["expires_at"],
        active=bool(row["active"]),
        access_count=int(row["access_count"]),
        last_accessed_at=row["last_accessed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        issuer_name=row.get("issuer_name"),
        claimant_name=row.get("claimant_name"),
        claimant_specialization=row.get("claimant_specialization"),
    )


def _unexpired(now: datetime):
    # A grant is expired once now > expires_at.
    return g.c.expires_at >= now


def _with_profiles():
    """Grant rows joined with the names of both parties."""
    patient = profiles.alias("patient")
    doctor = profiles.alias("doctor")
    return select(
        g,
        patient.c.full_name.label("issuer_name"),
        doctor.c.full_name.label("claimant_name"),
        doctor.c.specialization.label("claimant_specialization"),
    ).select_from(
        g.outerjoin(patient, patient.c.subject_id == g.c.issuer_id)
        .outerjoin(doctor, doctor.c.subject_id == g.c.claimant_id)
    )


class GrantStore:
    """CRUD plus the atomic claim and counter operations over access_grants."""

    def __init__(self, engine):
        self.engine = engine

    # ── Reads ────────────────────────────────────────────────────────

    def get(self, token: str) -> Optional[AccessGrant]:
        with self.engine.connect() as conn:
            row = conn.execute(select(g).where(g.c.token == token)).mappings().first()
        return _to_grant(row) if row else None

    def token_exists(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(g.c.id).where(g.c.token == token)).first()
        return row is not None

    def find_active_unclaimed_by_issuer(self, issuer_id: str,
                                        now: datetime) -> Optional[AccessGrant]:
        """Newest grant of *issuer_id* that nobody has claimed yet and is still usable."""
        sql = (
            select(g)
            .where(
                g.c.issuer_id == issuer_id,
                g.c.claimant_id.is_(None),
                g.c.active.is_(True),
                _unexpired(now),
            )
            .order_by(g.c.created_at.desc(), g.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(sql).mappings().first()
        return _to_grant(row) if row else None

    def list_by_issuer(self, issuer_id: str, now: datetime,
                       include_inactive: bool = False) -> List[AccessGrant]:
        sql = _with_profiles().where(g.c.issuer_id == issuer_id)
        if not include_inactive:
            sql = sql.where(g.c.active.is_(True), _unexpired(now))
        sql = sql.order_by(g.c.created_at.desc(), g.c.id.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return [_to_grant(r) for r in rows]

    def list_by_claimant(self, claimant_id: str, now: datetime) -> List[AccessGrant]:
        sql = (
            _with_profiles()
            .where(g.c.claimant_id == claimant_id, g.c.active.is_(True), _unexpired(now))
            .order_by(g.c.created_at.desc(), g.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(sql).mappings().all()
        return [_to_grant(r) for r in rows]

    # ── Writes ───────────────────────────────────────────────────────

    def insert(self, grant: AccessGrant) -> AccessGrant:
        """Persist a new grant; raises DuplicateToken if the token is taken."""
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(g).values(
                    token=grant.token,
                    issuer_id=grant.issuer_id,
                    claimant_id=grant.claimant_id,
                    permissions=grant.permissions,
                    expires_at=grant.expires_at,
                    active=grant.active,
                    access_count=grant.access_count,
                    last_accessed_at=grant.last_accessed_at,
                    created_at=grant.created_at,
                    updated_at=grant.updated_at or grant.created_at,
                ))
        except IntegrityError as e:
            if not self.token_exists(grant.token):
                raise
            raise DuplicateToken(grant.token) from e
        return grant

    def claim_atomically(self, token: str, claimant_id: str, now: datetime) -> AccessGrant:
        """
        Bind *claimant_id* to an unclaimed, active, unexpired grant.

        The check and the write are one UPDATE. When it matches no row the
        grant is re-read to explain why: claimed by the same claimant is a
        success, claimed by someone else is ClaimConflict.
        """
        claim = (
            update(g)
            .where(
                g.c.token == token,
                g.c.claimant_id.is_(None),
                g.c.active.is_(True),
                _unexpired(now),
            )
            .values(claimant_id=claimant_id, updated_at=now)
        )
        with self.engine.begin() as conn:
            updated = conn.execute(claim).rowcount
            row = conn.execute(select(g).where(g.c.token == token)).mappings().first()

        if row is None:
            raise NotFound()
        grant = _to_grant(row)
        if updated == 1:
            return grant
        if grant.is_expired(now):
            raise Expired()
        if not grant.active:
            raise Revoked()
        if grant.claimant_id == claimant_id:
            return grant
        raise ClaimConflict()

    def record_access(self, token: str, claimant_id: str,
                      now: datetime) -> Optional[AccessGrant]:
        """
        Count one authorized read and return the updated grant.

        Returns None, leaving the row untouched, when the grant is no longer
        active, unexpired and held by *claimant_id*.
        """
        stamp = update(g).where(
            g.c.token == token,
            g.c.claimant_id == claimant_id,
            g.c.active.is_(True),
            _unexpired(now),
        ).values(
            access_count=g.c.access_count + 1,
            last_accessed_at=case(
                (or_(g.c.last_accessed_at.is_(None), g.c.last_accessed_at < now), now),
                else_=g.c.last_accessed_at,
            ),
            updated_at=now,
        )
        with self.engine.begin() as conn:
            if conn.execute(stamp).rowcount != 1:
                return None
            row = conn.execute(select(g).where(g.c.token == token)).mappings().first()
        return _to_grant(row)

    def deactivate_expired(self, token: str, now: datetime) -> bool:
        """Flip ``active`` off for *token* if it has expired. True if a row changed."""
        sql = (
            update(g)
            .where(g.c.token == token, g.c.active.is_(True), g.c.expires_at < now)
            .values(active=False, updated_at=now)
        )
        with self.engine.begin() as conn:
            changed = conn.execute(sql).rowcount
        if changed:
            logger.info("[expire] Deactivated expired grant %s", token)
        return bool(changed)

    def revoke(self, token: str, issuer_id: str, now: datetime) -> bool:
        """Deactivate *token* if it belongs to *issuer_id*. True if a row changed."""
        sql = (
            update(g)
            .where(g.c.token == token, g.c.issuer_id == issuer_id, g.c.active.is_(True))
            .values(active=False, updated_at=now)
        )
        with self.engine.begin() as conn:
            return bool(conn.execute(sql).rowcount)

    def sweep_expired(self, now: datetime) -> int:
        """Deactivate every expired grant still flagged active; returns the count."""
        sql = (
            update(g)
            .where(g.c.active.is_(True), g.c.expires_at < now)
            .values(active=False, updated_at=now)
        )
        with self.engine.begin() as conn:
            return conn.execute(sql).rowcount
