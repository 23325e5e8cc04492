"""
Create (or promote) an administrator account.

    python create_admin.py --email admin@klicktools.io --name "Site Admin" --password 's3cret!'

An existing account with the same email is promoted to admin and its
password is reset.
"""

import argparse
import getpass
import logging
import sys
from typing import Any, Dict, Optional, Sequence

import database
from auth import hash_password
from database import Store
from schemas import new_user, utcnow

logger = logging.getLogger("create_admin")


def ensure_admin(store: Store, email: str, name: str, password: str) -> Dict[str, Any]:
    email = email.strip().lower()
    password_hash = hash_password(password)
    existing = store.users.find_one({"email": email})
    if existing:
        store.users.update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": "admin", "passwordHash": password_hash, "updatedAt": utcnow()}},
        )
        logger.info("Promoted existing user %s to admin", email)
        return store.users.find_one({"_id": existing["_id"]})
    user = new_user(email=email, name=name, password_hash=password_hash, role="admin")
    store.users.insert_one(user)
    logger.info("Created admin %s", email)
    return user


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Create or promote a KlickTools administrator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--password", help="prompted for when omitted")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    store = database.connect(database.DATABASE_URL, database.DATABASE_NAME)
    if store is None:
        logger.error("DATABASE_URL is not set")
        return 1
    password = args.password or getpass.getpass("Password: ")
    try:
        store.ensure_indexes()
        user = ensure_admin(store, args.email, args.name, password)
    finally:
        store.close()
    print(f"Admin ready: {user['email']} (id {user['_id']})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
