"""
Maintenance CLI for the grant exchange.

    python -m medshare.cli init-db
    python -m medshare.cli add-profile <subject_id> patient|doctor [--name NAME] [--specialization S]
    python -m medshare.cli sweep
    python -m medshare.cli list <subject_id> [--all]
    python -m medshare.cli new-secret

Suitable for cron: ``sweep`` only tidies the ``active`` flag, every read
re-checks expiry anyway.
"""

import argparse
import logging
import secrets
import sys

from medshare.config import LOG_LEVEL
from medshare.database import create_schema, init_engine
from medshare.errors import GrantError
from medshare.identity import ProfileDirectory
from medshare.lifecycle import GrantLifecycle
from medshare.models import utcnow
from medshare.store import GrantStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medshare", description="Grant exchange maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables if missing")

    add = sub.add_parser("add-profile", help="register a patient or doctor")
    add.add_argument("subject_id")
    add.add_argument("role", choices=["patient", "doctor"])
    add.add_argument("--name", default="")
    add.add_argument("--specialization", default=None, help="doctors only")

    sub.add_parser("sweep", help="deactivate expired grants")

    ls = sub.add_parser("list", help="show grants issued by or claimed by a subject")
    ls.add_argument("subject_id")
    ls.add_argument("--all", action="store_true", help="include revoked and expired grants")

    sub.add_parser("new-secret", help="print a fresh JWT_SECRET_KEY line for .env")
    return parser


def _party(subject_id, name) -> str:
    if not subject_id:
        return "-"
    return f"{subject_id} ({name})" if name else subject_id


def new_secret() -> str:
    """A signing secret for the bearer tokens, as a .env line."""
    return f"JWT_SECRET_KEY={secrets.token_hex(32)}"


def run(args, engine) -> int:
    directory = ProfileDirectory(engine)
    lifecycle = GrantLifecycle(GrantStore(engine), directory)

    if args.command == "init-db":
        create_schema(engine)
        print("[init] Tables ready.")
    elif args.command == "add-profile":
        profile = directory.add(args.subject_id, args.role, args.name,
                                args.specialization)
        print(f"[profile] Added {profile.role} {profile.subject_id}")
    elif args.command == "sweep":
        count = lifecycle.sweep_expired()
        print(f"[sweep] Deactivated {count} expired grants")
    elif args.command == "list":
        now = utcnow()
        issued = lifecycle.grants_for_issuer(args.subject_id, include_inactive=args.all)
        claimed = lifecycle.grants_for_claimant(args.subject_id)
        if not issued and not claimed:
            print("(no grants)")
        for grant in issued:
            print(f"issued   {grant.token}  {grant.state(now):8}  "
                  f"doctor={_party(grant.claimant_id, grant.claimant_name)}  "
                  f"expires={grant.expires_at:%Y-%m-%d %H:%M}  "
                  f"reads={grant.access_count}")
        for grant in claimed:
            print(f"claimed  {grant.token}  {grant.state(now):8}  "
                  f"patient={_party(grant.issuer_id, grant.issuer_name)}  "
                  f"expires={grant.expires_at:%Y-%m-%d %H:%M}  "
                  f"reads={grant.access_count}")
    return 0


def main(argv=None) -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    if args.command == "new-secret":
        # Must work before .env has a secret or a database.
        print(new_secret())
        return 0
    engine = init_engine()
    try:
        return run(args, engine)
    except GrantError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
