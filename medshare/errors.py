"""
Typed failures of the grant exchange.

Every error carries a stable ``code`` and the HTTP ``status`` the API
answers with.
"""

from typing import Optional


class GrantError(Exception):
    code = "grant_error"
    status = 400
    default_message = "Grant operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


class InvalidGrantRequest(GrantError):
    code = "invalid_request"
    status = 400
    default_message = "Invalid grant request"


class IssuerNotFound(GrantError):
    code = "issuer_not_found"
    status = 404
    default_message = "Patient profile not found"


class ClaimantNotFound(GrantError):
    code = "claimant_not_found"
    status = 404
    default_message = "Doctor profile not found"


class GenerationExhausted(GrantError):
    code = "generation_exhausted"
    status = 503
    default_message = "Failed to generate unique token after multiple attempts"


class NotFound(GrantError):
    code = "not_found"
    status = 404
    default_message = "Token not found"


class Revoked(NotFound):
    """The grant exists but was revoked; reported like an unknown token."""
    default_message = "Token not found or inactive"


class Expired(GrantError):
    code = "expired"
    status = 410
    default_message = "Token expired"


class AlreadyClaimedByOther(GrantError):
    code = "already_claimed"
    status = 409
    default_message = "Token has already been claimed by another doctor"


class Forbidden(GrantError):
    code = "forbidden"
    status = 403
    default_message = "Not allowed for this identity"


class Denied(GrantError):
    code = "denied"
    status = 403
    default_message = "Grant is no longer active"


class ClaimConflict(GrantError):
    """Another claimant won the conditional update. Internal to the store."""
    code = "claim_conflict"
    status = 409
    default_message = "Claim lost to a concurrent claimant"


class DuplicateToken(Exception):
    """Insert rejected by the unique constraint on ``access_grants.token``."""
