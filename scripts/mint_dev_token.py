#!/usr/bin/env python3
"""
Mint bearer tokens for local testing without an identity provider.

    python scripts/mint_dev_token.py patient-123 doctor-456
"""

import sys

from medshare.api.auth import generate_token
from medshare.config import SESSION_EXPIRY_HOURS

if __name__ == "__main__":
    subjects = sys.argv[1:]
    if not subjects:
        print("usage: mint_dev_token.py <subject_id> [<subject_id> ...]", file=sys.stderr)
        sys.exit(2)

    print("=" * 70)
    print(f"Development bearer tokens (valid {SESSION_EXPIRY_HOURS} hours)")
    print("=" * 70)
    for subject_id in subjects:
        print(f"\n{subject_id}:")
        print(f"  Authorization: Bearer {generate_token(subject_id)}")
    print()
    print("Register the subjects first: python -m medshare.cli add-profile <id> <role>")
