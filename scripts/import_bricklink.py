"""Bulk import a BrickLink inventory dump into MongoDB.

Lots are upserted by inventory_id in unordered batches. Transient Mongo errors
are retried up to 3 times (1s, 2s, 4s).

Usage:
  python -m scripts.import_bricklink --file /tmp/bricklink-last.json --dry --limit 10
  python -m scripts.import_bricklink --file /tmp/bricklink-last.json --batch 500
"""
import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pymongo import UpdateOne
from pymongo.errors import AutoReconnect, ExecutionTimeout, WTimeoutError

import config
import database
from bricklink import decode_name, lot_item_no

logger = logging.getLogger(__name__)

DEFAULT_FILE = "/tmp/bricklink-last.json"
MAX_RETRIES = 3
TRANSIENT_ERRORS = (AutoReconnect, ExecutionTimeout, WTimeoutError)


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _price(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value))
    except ValueError:
        return None


def _date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_item(it: Dict[str, Any]) -> Dict[str, Any]:
    item = it.get("item") or {}
    return {
        "inventory_id": it.get("inventory_id"),
        "item_no": str(lot_item_no(it) or ""),
        "item_name": decode_name(item.get("name")) or None,
        "item_type": item.get("type"),
        "color_id": it.get("color_id"),
        "color_name": it.get("color_name"),
        "quantity": _int(it.get("quantity")),
        "unit_price": _price(it.get("unit_price")),
        "new_or_used": it.get("new_or_used"),
        "bind_id": it.get("bind_id"),
        "description": it.get("description"),
        "date_created": _date(it.get("date_created")),
        "raw": it,
    }


def load_items(path: str) -> List[Dict[str, Any]]:
    """Lots from a dump; accepts the API envelope or a bare list. Raises ValueError."""
    with open(path, "r", encoding="utf-8") as fh:
        parsed = json.load(fh)
    if isinstance(parsed, dict):
        parsed = parsed.get("data")
    return parsed if isinstance(parsed, list) else []


def bulk_write_with_retry(collection, ops: List[UpdateOne], retries: int = MAX_RETRIES, sleep: Callable[[float], None] = time.sleep):
    attempt = 0
    while True:
        try:
            return collection.bulk_write(ops, ordered=False)
        except TRANSIENT_ERRORS as e:
            if attempt >= retries:
                raise
            wait = 2 ** attempt
            logger.warning("bulk_write transient error, retry %d after %ds: %s", attempt + 1, wait, e)
            sleep(wait)
            attempt += 1


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import a BrickLink inventory dump into MongoDB.")
    parser.add_argument("--file", default=DEFAULT_FILE, help="Path to the inventory JSON dump.")
    parser.add_argument("--dry", action="store_true", help="Print a normalised sample and exit.")
    parser.add_argument("--batch", type=int, default=500, help="Lots per bulk_write.")
    parser.add_argument("--limit", type=int, default=0, help="Only import the first N lots.")
    parser.add_argument("--collection", default=config.PRODUCTS_COLLECTION, help="Target collection.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not os.path.exists(args.file):
        print(f"File not found: {args.file}", file=sys.stderr)
        return 2
    try:
        items = load_items(args.file)
    except ValueError as e:
        print(f"JSON parse error: {e}", file=sys.stderr)
        return 2

    total = min(args.limit, len(items)) if args.limit > 0 else len(items)
    print(f"Found {len(items)} items in file; will process {total}{' (dry-run)' if args.dry else ''}")
    if total == 0:
        print("No items to import; exiting.")
        return 0

    if args.dry:
        sample = [normalize_item(it) for it in items[:min(10, total)]]
        print(json.dumps(sample, indent=2, default=str))
        return 0

    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2

    collection = database.db[args.collection]
    batch_size = max(1, args.batch)
    processed = skipped = 0
    for start in range(0, total, batch_size):
        batch = items[start:min(start + batch_size, total)]
        ops = []
        for it in batch:
            doc = normalize_item(it)
            if doc["inventory_id"] is None:
                skipped += 1
                continue
            ops.append(UpdateOne({"inventory_id": doc["inventory_id"]}, {"$set": doc}, upsert=True))
        if ops:
            try:
                res = bulk_write_with_retry(collection, ops)
            except TRANSIENT_ERRORS as e:
                print(f"bulk_write failed: {e}", file=sys.stderr)
                return 1
            logger.info("Batch %d-%d ok: upserted=%d modified=%d", start, start + len(batch) - 1, res.upserted_count, res.modified_count)
        processed += len(batch)
        print(f"Progress: {processed}/{total}")

    print(f"Import complete. Processed: {processed}, skipped without inventory_id: {skipped}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
