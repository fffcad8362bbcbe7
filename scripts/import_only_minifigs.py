"""Import only the minifig lots of a BrickLink dump into products_minifig.

The raw lot is stored as-is, keyed by inventory_id, else by (itemNo, color_id).

Usage:
  python -m scripts.import_only_minifigs --file /tmp/bricklink-last.json
"""
import argparse
import logging
import os
import sys
from typing import Any, Dict, Optional, Sequence

from pymongo import UpdateOne

import config
import database
from bricklink import is_minifig, lot_item_no
from scripts.import_bricklink import DEFAULT_FILE, bulk_write_with_retry, load_items

logger = logging.getLogger(__name__)

BATCH = 200


def upsert_op(lot: Dict[str, Any]) -> Optional[UpdateOne]:
    item_no = lot_item_no(lot)
    doc = dict(lot, itemNo=item_no)
    if lot.get("inventory_id"):
        return UpdateOne({"inventory_id": lot["inventory_id"]}, {"$set": doc}, upsert=True)
    if item_no:
        return UpdateOne({"itemNo": item_no, "color_id": lot.get("color_id")}, {"$set": doc}, upsert=True)
    return None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import minifig lots into products_minifig.")
    parser.add_argument("--file", default=DEFAULT_FILE, help="Path to the inventory JSON dump.")
    parser.add_argument("--collection", default=config.MINIFIG_COLLECTION, help="Target collection.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2
    if not os.path.exists(args.file):
        print(f"Raw file not found at {args.file}", file=sys.stderr)
        return 2
    try:
        items = load_items(args.file)
    except ValueError as e:
        print(f"Failed parsing JSON: {e}", file=sys.stderr)
        return 2

    minifigs = [it for it in items if is_minifig(it)]
    print(f"Total items in raw file: {len(items)}")
    print(f"Filtered minifigs count: {len(minifigs)}")
    if not minifigs:
        print("No minifigs found. Exiting.")
        return 0

    collection = database.db[args.collection]
    upserted = skipped = 0
    for start in range(0, len(minifigs), BATCH):
        ops = []
        for lot in minifigs[start:start + BATCH]:
            op = upsert_op(lot)
            if op is None:
                skipped += 1
                continue
            ops.append(op)
        if ops:
            res = bulk_write_with_retry(collection, ops)
            upserted += res.upserted_count + res.modified_count
            logger.info("Batch %d ok: upserted=%d modified=%d", start // BATCH + 1, res.upserted_count, res.modified_count)

    print(f"Done. Written: {upserted}, skipped without key: {skipped}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
