"""Pull the BrickLink store inventory and upsert the for-sale minifigs into products.

Usage:
  python -m scripts.sync_bricklink
  python -m scripts.sync_bricklink --prune --dump /tmp/bricklink-last.json
"""
import argparse
import json
import logging
import sys
from typing import Optional, Sequence

import config
import database
from bricklink import BrickLinkClient, BrickLinkError
from inventory import sync_inventory

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync BrickLink store inventory into MongoDB.")
    parser.add_argument("--prune", action="store_true", help="Delete minifig products BrickLink no longer lists.")
    parser.add_argument("--dump", default=None, help="Also write the raw inventory JSON to this file.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2

    client = BrickLinkClient()
    if not client.configured:
        print("Missing BrickLink credentials (BL_KEY, BL_SECRET, BL_TOKEN, BL_TOKEN_SECRET).", file=sys.stderr)
        return 2

    try:
        lots = client.inventories()
    except BrickLinkError as e:
        print(f"BrickLink request failed: {e}", file=sys.stderr)
        return 1
    logger.info("Fetched %d lots from BrickLink", len(lots))

    if args.dump:
        with open(args.dump, "w", encoding="utf-8") as fh:
            json.dump({"data": lots}, fh)
        logger.info("Wrote raw inventory to %s", args.dump)

    stats = sync_inventory(database.db, prune=args.prune, lots=lots)
    print(json.dumps(stats))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
