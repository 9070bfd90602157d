"""
Out-of-band admin provisioning.

Admin rights are never granted over HTTP. An operator runs this against the
database directly, either creating a fresh admin account or promoting an
existing user.

Usage:
  storefront-admin create --username admin --email admin@example.com --password ...
  storefront-admin promote --username alice
"""
import argparse
import getpass
import sys
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import auth
from .db import Base, SessionLocal, engine
from .errors import StorefrontError
from .logging_config import setup_logging


def create_admin(db: Session, username: str, email: str, password: str):
    user = auth.create_user(db, username, email, password)
    return auth.promote_to_admin(db, user.username)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storefront-admin")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a new admin account")
    create.add_argument("--username", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--password", help="Prompted for when omitted")

    promote = sub.add_parser("promote", help="Grant admin rights to an existing user")
    promote.add_argument("--username", required=True)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if args.command == "create":
            password = args.password or getpass.getpass("Password: ")
            user = create_admin(db, args.username, args.email, password)
        else:
            user = auth.promote_to_admin(db, args.username)
    except StorefrontError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print(f"{user.username} (id={user.id}) is an admin")
    return 0


if __name__ == "__main__":
    sys.exit(main())
