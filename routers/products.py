"""
Catalog routes: product listing, product detail and the minifig views.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

import config
from cart import product_lookup
from catalog import build_minifig_query, build_product_query, minifig_match, paginate, quantity_totals_pipeline, to_sort
from database import get_db, to_str_id

router = APIRouter()


def _params(request: Request) -> dict:
    return dict(request.query_params)


@router.get("/api/products")
def list_products(request: Request, db=Depends(get_db)):
    params = _params(request)
    use_minifig = params.get("collection") == "minifig" or params.get("type") == "MINIFIG_ONLY"
    collection = config.MINIFIG_COLLECTION if use_minifig else config.PRODUCTS_COLLECTION

    match = build_product_query(params, nested=use_minifig)
    page, limit, skip = paginate(params.get("page"), params.get("limit"))
    sort = params.get("sort") or "name_asc"

    coll = db[collection]
    count = coll.count_documents(match)
    docs = coll.find(match).sort(to_sort(sort)).skip(skip).limit(limit)

    return {
        "items": [to_str_id(d) for d in docs],
        "count": count,
        "page": page,
        "limit": limit,
        "meta": {
            "collection": collection,
            "onlyInStock": "qty" in match,
            "sort": sort,
            "type": params.get("type") or "MINIFIG",
        },
    }


@router.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    doc = db[config.PRODUCTS_COLLECTION].find_one(product_lookup(product_id.strip()))
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return to_str_id(doc)


@router.get("/api/minifigs")
def list_minifigs(request: Request, db=Depends(get_db)):
    params = _params(request)
    where = build_minifig_query(params)
    _, limit, skip = paginate(params.get("page"), params.get("limit"))

    coll = db[config.PRODUCTS_COLLECTION]
    count = coll.count_documents(where)
    docs = coll.find(where).sort(to_sort(params.get("sort"))).skip(skip).limit(limit)
    return {"count": count, "inventory": [to_str_id(d) for d in docs]}


def _stats_collection(db) -> str:
    names = set(db.list_collection_names())
    for name in (config.ENRICHED_COLLECTION, config.MINIFIG_COLLECTION):
        if name in names:
            return name
    return config.PRODUCTS_COLLECTION


def _totals(coll, match: dict):
    rows = list(coll.aggregate(quantity_totals_pipeline(match)))
    if not rows:
        return 0, 0
    return rows[0]["lots"], int(rows[0]["items"])


@router.get("/api/minifigs/stats")
def minifig_stats(includeStockroom: Optional[str] = None, db=Depends(get_db)):
    name = _stats_collection(db)
    coll = db[name]
    available_lots, available_items = _totals(coll, minifig_match(False))
    total_lots, total_items = _totals(coll, minifig_match(True))
    return {
        "collection": name,
        "availableLots": available_lots,
        "availableItems": available_items,
        "totalLots": total_lots,
        "totalItems": total_items,
        "includeStockroom": includeStockroom == "1",
    }
