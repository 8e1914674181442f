"""
Delete expired login sessions, once or on an interval.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rewear.dependencies import get_db_client

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Purge expired ReWear sessions")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=0,
        help="Seconds between purges (0 runs once and exits)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    while True:
        try:
            purged = db.purge_expired_sessions()
            logger.info("Purged %d expired sessions", purged)
        except Exception as exc:
            logger.exception("Purge failed: %s", exc)
            if not args.interval_seconds:
                return 1

        if not args.interval_seconds:
            return 0
        time.sleep(args.interval_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
