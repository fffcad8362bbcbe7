"""Build products_minifig_enriched by joining products_minifig with products.

Fields on the minifig document win; the matching product fills the gaps.

Usage:
  python -m scripts.enrich_minifigs
"""
import argparse
import logging
import sys
from typing import List, Optional, Sequence

from pymongo.errors import PyMongoError

import config
import database

logger = logging.getLogger(__name__)


def _first_of(*paths: str):
    """Nested $ifNull picking the first non-null of the given field paths."""
    expr = paths[-1]
    for path in reversed(paths[:-1]):
        expr = {"$ifNull": [path, expr]}
    return expr


def build_enrich_pipeline(products: Optional[str] = None, out: Optional[str] = None) -> List[dict]:
    products = products or config.PRODUCTS_COLLECTION
    out = out or config.ENRICHED_COLLECTION
    return [
        {"$addFields": {"joinNo": {"$ifNull": ["$itemNo", "$no"]}}},
        {"$lookup": {
            "from": products,
            "let": {"j": "$joinNo"},
            "pipeline": [
                {"$match": {"$expr": {"$or": [
                    {"$eq": ["$itemNo", "$$j"]},
                    {"$eq": ["$no", "$$j"]},
                ]}}},
                {"$project": {
                    "_id": 0, "itemNo": 1, "no": 1, "name": 1,
                    "theme": 1, "themeName": 1, "themeLabel": 1,
                    "price": 1, "priceCents": 1,
                    "imageUrl": 1, "mainImage": 1, "blImageUrl": 1, "images": 1,
                    "stock": 1, "qty": 1, "quantity": 1,
                }},
            ],
            "as": "p",
        }},
        {"$addFields": {"p": {"$first": "$p"}}},
        {"$addFields": {
            "itemNo": _first_of("$itemNo", "$no", "$p.itemNo", "$p.no"),
            "name": _first_of("$name", "$item.name", "$p.name"),
            "theme": _first_of("$theme", "$themeName", "$p.theme", "$p.themeName", "$p.themeLabel"),
            "imageUrl": _first_of(
                "$imageUrl", "$mainImage", "$blImageUrl",
                "$p.imageUrl", "$p.mainImage", "$p.blImageUrl",
                {"$arrayElemAt": ["$p.images", 0]},
            ),
            "priceCents": {"$cond": [
                {"$gt": [{"$ifNull": ["$priceCents", 0]}, 0]},
                "$priceCents",
                {"$cond": [
                    {"$gt": [{"$ifNull": ["$p.priceCents", 0]}, 0]},
                    "$p.priceCents",
                    {"$multiply": [_first_of("$price", "$p.price", 0), 100]},
                ]},
            ]},
            "price": _first_of("$price", "$p.price"),
            "stock": _first_of("$stock", "$qty", "$quantity", "$p.stock", "$p.qty", "$p.quantity", 0),
        }},
        {"$project": {"p": 0, "joinNo": 0}},
        {"$merge": {"into": out, "on": "_id", "whenMatched": "replace", "whenNotMatched": "insert"}},
    ]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enrich minifig lots with product details.")
    parser.add_argument("--source", default=config.MINIFIG_COLLECTION)
    parser.add_argument("--products", default=config.PRODUCTS_COLLECTION)
    parser.add_argument("--out", default=config.ENRICHED_COLLECTION)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if database.db is None:
        print("DATABASE_URL not set. Load .env or export it.", file=sys.stderr)
        return 2

    try:
        list(database.db[args.source].aggregate(build_enrich_pipeline(args.products, args.out), allowDiskUse=True))
        count = database.db[args.out].count_documents({})
    except PyMongoError as e:
        print(f"Enrichment failed: {e}", file=sys.stderr)
        return 1
    print(f"{args.out} now holds {count} documents")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
