"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Tokens ───────────────────────────────────────────────────────────
# Uppercase letters and digits without the easily confused I, L, O, 0, 1.
TOKEN_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
TOKEN_LENGTH = 8
MAX_TOKEN_ATTEMPTS = 10

# ── Grants ───────────────────────────────────────────────────────────
DEFAULT_TTL_HOURS = 24
MAX_TTL_HOURS = 24 * 30

SCOPES = ("view_medical_history", "view_medications", "view_diagnosis")

# Issued when the patient does not choose a permission set.
DEFAULT_PERMISSIONS = {scope: True for scope in SCOPES}

# ── Identity / API server ────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
SESSION_EXPIRY_HOURS = 24

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
