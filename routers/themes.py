from typing import Optional

from fastapi import APIRouter, Depends

import config
from catalog import build_other_nor, build_theme_or, truthy
from database import get_db
from themes import CMF_ORDER, CMF_SERIES, OTHER_BUCKET, THEME_BUCKETS

router = APIRouter(prefix="/api/themes")


def _base_match(type_: Optional[str], include_sold_out: Optional[str]) -> dict:
    match = {"type": type_ or "MINIFIG"}
    if not truthy(include_sold_out):
        match["qty"] = {"$gt": 0}
    return match


@router.get("")
def theme_counts(type: Optional[str] = None, includeSoldOut: Optional[str] = None, db=Depends(get_db)):
    """Product counts per browse bucket, plus everything else as "other"."""
    products = db[config.PRODUCTS_COLLECTION]
    match = _base_match(type, includeSoldOut)

    items = []
    for bucket in THEME_BUCKETS:
        count = products.count_documents(dict(match, **{"$or": build_theme_or(bucket["key"])}))
        items.append({"key": bucket["key"], "label": bucket["label"], "count": count})

    other_match = dict(match)
    other_match.update(build_other_nor() or {})
    items.append({"key": OTHER_BUCKET["key"], "label": OTHER_BUCKET["label"], "count": products.count_documents(other_match)})

    items.sort(key=lambda b: b["label"].lower())
    return {"items": items}


@router.get("/collectibles")
def collectible_series(includeSoldOut: Optional[str] = None, db=Depends(get_db)):
    match = _base_match("MINIFIG", includeSoldOut)
    match["seriesKey"] = {"$ne": None}
    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$seriesKey", "count": {"$sum": 1}}},
    ]
    counts = {row["_id"]: row["count"] for row in db[config.PRODUCTS_COLLECTION].aggregate(pipeline)}
    items = [
        {"key": code, "label": CMF_SERIES[code], "count": counts[code]}
        for code in CMF_ORDER
        if counts.get(code)
    ]
    return {"items": items, "total": sum(i["count"] for i in items)}
