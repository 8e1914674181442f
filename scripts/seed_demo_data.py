"""
Seed demo users and listings into the configured database.

Each demo user signs up through the normal auth flow, so passwords are hashed
and profiles start at zero points. Users that already exist are reused.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rewear import auth, items
from rewear.db import DbClient, UserRecord
from rewear.dependencies import get_change_feed, get_db_client

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("Ada Green", "ada@example.com"),
    ("Sam Thread", "sam@example.com"),
]

DEMO_ITEMS = [
    {"title": "Denim jacket", "category": "Outerwear", "size": "M", "condition": "Good", "point_value": 40, "tags": ["denim", "vintage"]},
    {"title": "Linen shirt", "category": "Tops", "size": "L", "condition": "Like New", "point_value": 25, "tags": ["summer"]},
    {"title": "Leather boots", "category": "Footwear", "size": "S", "condition": "Fair", "point_value": 55, "tags": ["leather"]},
    {"title": "Wrap dress", "category": "Dresses", "size": "XS", "condition": "New", "point_value": 35, "tags": []},
]


def ensure_user(db: DbClient, name: str, email: str, password: str) -> UserRecord:
    existing = db.get_user_by_email(email)
    if existing:
        logger.info("User %s already exists", email)
        return existing
    user, _ = auth.sign_up(db, name, email, password)
    logger.info("Created user %s (%s)", email, user.id)
    return user


def seed(db: DbClient, password: str, items_per_user: int) -> int:
    feed = get_change_feed()
    created = 0
    for index, (name, email) in enumerate(DEMO_USERS):
        user = ensure_user(db, name, email, password)
        for offset in range(items_per_user):
            payload = DEMO_ITEMS[(index * items_per_user + offset) % len(DEMO_ITEMS)]
            items.create_item(db, user.id, dict(payload), feed=feed)
            created += 1
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed ReWear demo data")
    parser.add_argument(
        "--password",
        type=str,
        default="Demo1234",
        help="Password for every demo account",
    )
    parser.add_argument(
        "--items-per-user",
        type=int,
        default=2,
        help="How many listings to create for each demo user",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    db = get_db_client()
    created = seed(db, args.password, args.items_per_user)
    logger.info("Created %d items", created)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
