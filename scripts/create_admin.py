"""Create (or reset the password of) an admin user.

Usage:
  python -m scripts.create_admin --email me@example.com --name "Store Admin" --password s3cret
"""
import argparse
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from pydantic import ValidationError

import config
import database
from auth import hash_password
from schemas import User


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an admin user.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--password", required=True)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2
    if len(args.password) < 8:
        print("Password must be at least 8 characters.", file=sys.stderr)
        return 2

    try:
        user = User(name=args.name, email=args.email, password_hash=hash_password(args.password), role="admin")
    except ValidationError as e:
        print(f"Invalid user: {e}", file=sys.stderr)
        return 2

    users = database.db[config.USERS_COLLECTION]
    existing = users.find_one({"email": user.email})
    if existing:
        users.update_one(
            {"_id": existing["_id"]},
            {"$set": {"password_hash": user.password_hash, "role": "admin", "is_active": True,
                      "name": user.name, "updated_at": datetime.now(timezone.utc)}},
        )
        print(f"Updated admin {user.email}")
        return 0

    user_id = database.create_document(config.USERS_COLLECTION, user)
    print(f"Created admin {user.email} ({user_id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
