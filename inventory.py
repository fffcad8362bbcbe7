"""
Stock bookkeeping and the BrickLink inventory sync.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from pymongo import UpdateOne

import config
from bricklink import BrickLinkClient, is_for_sale, is_minifig, lot_to_product
from cart import product_lookup
from themes import classify_product

logger = logging.getLogger(__name__)

INCOMPLETE_FILTER = {"$or": [
    {"inventoryId": {"$exists": False}},
    {"inventoryId": None},
    {"itemNo": {"$in": [None, ""]}},
]}


def product_filter(ref: Any) -> Optional[Dict[str, Any]]:
    """Filter for a product referenced by inventoryId, ObjectId or itemNo."""
    if ref is None or ref == "":
        return None
    s = str(ref).strip()
    return product_lookup(s) if s else None


def adjust_stock(db, ref: Any, delta: int) -> Dict[str, Any]:
    """
    Apply a signed quantity change to one product.

    Removals only apply when enough stock is left, so qty never drops below zero.
    """
    flt = product_filter(ref)
    if flt is None or not delta:
        return {"id": ref, "ok": False, "reason": "bad_item", "matched": 0, "modified": 0}

    products = db[config.PRODUCTS_COLLECTION]
    if delta < 0:
        guarded = dict(flt, qty={"$gte": -delta})
        res = products.update_one(guarded, {"$inc": {"qty": delta}})
        if res.matched_count == 0:
            exists = products.find_one(flt, {"_id": 1}) is not None
            reason = "insufficient_stock" if exists else "not_found"
            logger.warning("Stock change %s on %s not applied: %s", delta, ref, reason)
            return {"id": ref, "ok": False, "reason": reason, "matched": 0, "modified": 0}
    else:
        res = products.update_one(flt, {"$inc": {"qty": delta}})
        if res.matched_count == 0:
            logger.warning("Restock of %s matched no product", ref)
            return {"id": ref, "ok": False, "reason": "not_found", "matched": 0, "modified": 0}

    return {"id": ref, "ok": res.modified_count > 0, "matched": res.matched_count, "modified": res.modified_count}


def decrement_for_items(db, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [adjust_stock(db, it.get("id"), -int(it.get("qty") or 0)) for it in items if int(it.get("qty") or 0) > 0]


def restock_for_items(db, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [adjust_stock(db, it.get("id"), int(it.get("qty") or 0)) for it in items if int(it.get("qty") or 0) > 0]


# ----- BrickLink sync -----

def product_key(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if doc.get("inventoryId"):
        return {"inventoryId": doc["inventoryId"]}
    if doc.get("itemNo"):
        return {"itemNo": doc["itemNo"]}
    return None


def sync_inventory(db, client: Optional[BrickLinkClient] = None, prune: bool = False, lots: Optional[List[dict]] = None) -> Dict[str, int]:
    """
    Upsert every for-sale minifig lot from the BrickLink store into products.

    With ``prune`` minifig products that BrickLink no longer returns are deleted.
    """
    if lots is None:
        client = client or BrickLinkClient()
        lots = client.inventories()

    products = db[config.PRODUCTS_COLLECTION]
    ops = []
    kept_ids: List[int] = []
    kept_item_nos: List[str] = []
    skipped = 0

    for lot in lots:
        if not is_minifig(lot) or not is_for_sale(lot):
            skipped += 1
            continue
        doc = lot_to_product(lot)
        doc["type"] = "MINIFIG"
        key = product_key(doc)
        if key is None:
            skipped += 1
            continue
        ops.append(UpdateOne(key, {"$set": doc}, upsert=True))
        if doc.get("inventoryId"):
            kept_ids.append(doc["inventoryId"])
        if doc.get("itemNo"):
            kept_item_nos.append(doc["itemNo"])

    upserted = matched = 0
    if ops:
        res = products.bulk_write(ops, ordered=False)
        upserted, matched = res.upserted_count, res.matched_count
        logger.info("BrickLink sync: %d inserted, %d matched", upserted, matched)

    pruned = 0
    if prune and (kept_ids or kept_item_nos):
        res = products.delete_many({
            "type": "MINIFIG",
            "inventoryId": {"$nin": kept_ids},
            "itemNo": {"$nin": kept_item_nos},
        })
        pruned = res.deleted_count
        logger.info("BrickLink sync pruned %d products", pruned)

    return {"upserted": upserted, "matched": matched, "pruned": pruned, "kept": len(ops), "skipped": skipped}


# ----- maintenance -----

def purge_incomplete(db) -> Dict[str, int]:
    """Delete products missing an inventoryId or itemNo."""
    products = db[config.PRODUCTS_COLLECTION]
    before = products.count_documents(INCOMPLETE_FILTER)
    removed = products.delete_many(INCOMPLETE_FILTER).deleted_count
    return {"removed": removed, "incompleteBefore": before, "totalAfter": products.count_documents({})}


def backfill_themes(db) -> Dict[str, int]:
    """Recompute themeKey/themeLabel/seriesKey where they changed."""
    products = db[config.PRODUCTS_COLLECTION]
    scanned = updated = 0
    for doc in products.find({"type": "MINIFIG"}, {"itemNo": 1, "name": 1, "themeKey": 1, "themeLabel": 1, "seriesKey": 1}):
        scanned += 1
        fields = classify_product(doc)
        if any(doc.get(k) != v for k, v in fields.items()):
            products.update_one({"_id": doc["_id"]}, {"$set": fields})
            updated += 1
    return {"scanned": scanned, "updated": updated}
