"""
Identity directory – resolving subject ids to known patient/doctor profiles.

Subject ids come from the external identity provider; this module only
checks that they belong to a registered profile with the expected role.
"""

from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from medshare.database import profiles
from medshare.errors import ClaimantNotFound, InvalidGrantRequest, IssuerNotFound
from medshare.models import Profile, utcnow

ROLES = {"patient", "doctor"}


class ProfileDirectory:
    """Lookup of portal profiles by subject id."""

    def __init__(self, engine):
        self.engine = engine

    def find(self, subject_id: str) -> Optional[Profile]:
        if not subject_id:
            return None
        sql = select(profiles).where(profiles.c.subject_id == subject_id)
        with self.engine.connect() as conn:
            row = conn.execute(sql).mappings().first()
        if not row:
            return None
        return Profile(
            subject_id=str(row["subject_id"]),
            role=str(row["role"]).strip().lower(),
            full_name=str(row["full_name"]),
            specialization=row["specialization"],
            created_at=row["created_at"],
        )

    def resolve_patient(self, subject_id: str) -> Profile:
        """Return the patient profile for *subject_id* or raise IssuerNotFound."""
        profile = self.find(subject_id)
        if profile is None or profile.role != "patient":
            raise IssuerNotFound(f"Patient profile not found for subject '{subject_id}'.")
        return profile

    def resolve_doctor(self, subject_id: str) -> Profile:
        """Return the doctor profile for *subject_id* or raise ClaimantNotFound."""
        profile = self.find(subject_id)
        if profile is None or profile.role != "doctor":
            raise ClaimantNotFound(
                f"Doctor profile not found for subject '{subject_id}'. "
                "Please ensure you have a valid doctor account."
            )
        return profile

    def add(self, subject_id: str, role: str, full_name: str = "",
            specialization: Optional[str] = None) -> Profile:
        """Register a profile (used by the CLI and by tests)."""
        role = role.strip().lower()
        if role not in ROLES:
            raise InvalidGrantRequest(f"Unsupported role '{role}'.")
        if not subject_id:
            raise InvalidGrantRequest("subject_id is required")
        created_at = utcnow()
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(profiles).values(
                    subject_id=subject_id,
                    role=role,
                    full_name=full_name,
                    specialization=specialization,
                    created_at=created_at,
                ))
        except IntegrityError as e:
            raise InvalidGrantRequest(f"Profile '{subject_id}' already exists.") from e
        return Profile(subject_id=subject_id, role=role, full_name=full_name,
                       specialization=specialization, created_at=created_at)
