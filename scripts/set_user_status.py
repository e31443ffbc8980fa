#!/usr/bin/env python3
"""Activate or block a user account (idempotent).

Blocked accounts cannot log in and show up in the inactive students report.

Usage:
  python scripts/set_user_status.py --email student@example.com --block
  python scripts/set_user_status.py --email student@example.com --activate
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import User  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Email of the account to change")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--activate", action="store_true")
    group.add_argument("--block", action="store_true")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == args.email).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        wanted = bool(args.activate)
        if user.is_active == wanted:
            print(f"No change: {args.email} is already {'active' if wanted else 'blocked'}")
            return
        user.is_active = wanted
        print(f"{args.email} is now {'active' if wanted else 'blocked'}")


if __name__ == "__main__":
    main()
