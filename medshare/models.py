"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from medshare.config import SCOPES


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class Profile:
    """A known portal identity, as supplied by the identity provider."""
    subject_id: str
    role: str                  # "patient" or "doctor"
    full_name: str
    specialization: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class AccessGrant:
    """A patient-issued, doctor-claimed capability to view record categories."""
    token: str
    issuer_id: str
    expires_at: datetime
    permissions: Dict[str, bool] = field(default_factory=dict)
    claimant_id: Optional[str] = None
    active: bool = True
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Counterparty details, filled in by the listing queries only.
    issuer_name: Optional[str] = None
    claimant_name: Optional[str] = None
    claimant_specialization: Optional[str] = None

    @property
    def scopes(self) -> FrozenSet[str]:
        """Scope names this grant authorizes."""
        return frozenset(s for s in SCOPES if self.permissions.get(s))

    @property
    def is_claimed(self) -> bool:
        return self.claimant_id is not None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def state(self, now: datetime) -> str:
        """One of "issued", "claimed", "expired" or "revoked"."""
        if self.is_expired(now):
            return "expired"
        if not self.active:
            return "revoked"
        return "claimed" if self.is_claimed else "issued"

    def summary(self, now: datetime) -> dict:
        """JSON-friendly description, used by the API and the CLI."""
        return {
            "token": self.token,
            "issuer_id": self.issuer_id,
            "claimant_id": self.claimant_id,
            "state": self.state(now),
            "permissions": {s: bool(self.permissions.get(s)) for s in SCOPES},
            "expires_at": self.expires_at.isoformat(),
            "access_count": self.access_count,
            "last_accessed_at": (
                self.last_accessed_at.isoformat() if self.last_accessed_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "patient": {"subject_id": self.issuer_id, "full_name": self.issuer_name},
            "doctor": {
                "subject_id": self.claimant_id,
                "full_name": self.claimant_name,
                "specialization": self.claimant_specialization,
            } if self.claimant_id else None,
        }


@dataclass
class IssueResult:
    """Outcome of an issue request: the grant and whether it was reused."""
    grant: AccessGrant
    reused: bool

    @property
    def token(self) -> str:
        return self.grant.token


@dataclass(frozen=True)
class ScopedView:
    """
    Read-only descriptor naming the data categories a claimant may see.

    Fetching the records themselves is up to the caller; it must only
    fetch categories listed in ``scopes``.
    """
    token: str
    issuer_id: str
    claimant_id: str
    scopes: FrozenSet[str]
    access_count: int
    accessed_at: datetime
    expires_at: datetime

    def allows(self, scope: str) -> bool:
        return scope in self.scopes

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "patient_id": self.issuer_id,
            "doctor_id": self.claimant_id,
            "scopes": sorted(self.scopes),
            "access_count": self.access_count,
            "accessed_at": self.accessed_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
