"""
JWT identity helpers and middleware for the Flask API.

Tokens are minted by the external identity provider; the ``sub`` claim is
the stable subject id of the patient or doctor.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import jsonify, request

from medshare.config import JWT_ALGORITHM, SECRET_KEY, SESSION_EXPIRY_HOURS


def generate_token(subject_id: str, expiry_hours: float = SESSION_EXPIRY_HOURS) -> str:
    """Mint a bearer token for *subject_id* (development and tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject_id,
        "iat": now,
        "exp": now + timedelta(hours=expiry_hours),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def identity_required(f):
    """Decorator that attaches the caller's subject id as ``request.subject_id``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            return jsonify({"error": "Authentication token is missing"}), 401

        parts = auth_header.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return jsonify({"error": "Invalid authorization header format"}), 401

        payload = verify_token(parts[1])
        if not payload or not payload.get("sub"):
            return jsonify({"error": "Invalid or expired token"}), 401

        request.subject_id = str(payload["sub"])
        return f(*args, **kwargs)

    return decorated
