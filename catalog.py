"""
Catalog query builders.

Pure functions turning request parameters into MongoDB filter documents.
"""
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from themes import THEME_BUCKETS, BUCKETS_BY_KEY

DEFAULT_LIMIT = 36
MAX_LIMIT = 200

MATCH_NOTHING = {"_id": {"$exists": False}}


def parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        n = float(str(value).strip())
    except ValueError:
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    return int(n) if n.is_integer() else n


def truthy(value: Any) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_sort(sort: Optional[str]) -> List[Tuple[str, int]]:
    s = str(sort or "")
    if s == "name_desc":
        return [("name", DESCENDING)]
    if s == "price_asc":
        return [("price", ASCENDING), ("name", ASCENDING)]
    if s == "price_desc":
        return [("price", DESCENDING), ("name", ASCENDING)]
    return [("name", ASCENDING)]


def paginate(page: Any = None, limit: Any = None) -> Tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, skip)."""
    p = parse_number(page)
    n = parse_number(limit)
    page_num = max(1, int(p)) if p is not None else 1
    per = max(1, min(MAX_LIMIT, int(n))) if n is not None else DEFAULT_LIMIT
    return page_num, per, (page_num - 1) * per


def _bucket_clauses(bucket: Mapping) -> List[dict]:
    clauses = []
    for prefix in bucket["prefixes"]:
        clauses.append({"itemNo": {"$regex": "^" + re.escape(prefix), "$options": "i"}})
    for frag in bucket["contains"]:
        clauses.append({"name": {"$regex": re.escape(frag), "$options": "i"}})
    return clauses


def build_theme_or(theme_key: str) -> List[dict]:
    """$or clauses selecting one browse bucket; never empty."""
    bucket = BUCKETS_BY_KEY.get(theme_key)
    clauses = _bucket_clauses(bucket) if bucket else []
    return clauses or [MATCH_NOTHING]


def build_other_nor() -> Optional[dict]:
    """Everything that falls in no known bucket."""
    groups = []
    for bucket in THEME_BUCKETS:
        clauses = _bucket_clauses(bucket)
        if clauses:
            groups.append({"$or": clauses})
    if not groups:
        return None
    return {"$nor": groups}


def build_series_filter(series: Any) -> Optional[dict]:
    n = parse_number(series)
    if not n:
        return None
    n = int(n)
    return {"$or": [
        {"name": {"$regex": r"Series\s*%d\b" % n, "$options": "i"}},
        {"itemNo": {"$regex": r"^col0?%d(?!\d)" % n, "$options": "i"}},
    ]}


def _and(match: dict, clause: dict) -> None:
    match.setdefault("$and", []).append(clause)


def build_product_query(params: Mapping[str, Any], nested: bool = False) -> Dict[str, Any]:
    """
    Filter document for the product listing.

    Recognised params: type, q, cond, minPrice, maxPrice, theme, series,
    includeSoldOut, onlyInStock. With ``nested`` the filter also accepts the raw
    BrickLink layout where type/name/no live under ``item``.
    """
    match: Dict[str, Any] = {}

    requested_type = str(params.get("type") or "MINIFIG")
    if requested_type == "MINIFIG_ONLY":
        requested_type = "MINIFIG"
    include_sold_out = truthy(params.get("includeSoldOut"))
    only_in_stock = truthy(params.get("onlyInStock")) or not include_sold_out

    if requested_type != "ALL":
        if nested:
            _and(match, {"$or": [{"type": requested_type}, {"item.type": requested_type}]})
        else:
            match["type"] = requested_type

    if only_in_stock:
        match["qty"] = {"$gt": 0}

    cond = str(params.get("cond") or "").upper()
    if cond in ("N", "U"):
        match["condition"] = cond

    min_price = parse_number(params.get("minPrice"))
    max_price = parse_number(params.get("maxPrice"))
    if min_price is not None or max_price is not None:
        price: Dict[str, Any] = {}
        if min_price is not None:
            price["$gte"] = min_price
        if max_price is not None:
            price["$lte"] = max_price
        match["price"] = price

    q = str(params.get("q") or "").strip()
    if q:
        esc = re.escape(q)
        name_rx = {"$regex": esc, "$options": "i"}
        no_rx = {"$regex": "^" + esc, "$options": "i"}
        search = [{"name": name_rx}, {"itemNo": no_rx}]
        if nested:
            search += [{"item.name": name_rx}, {"item.no": no_rx}]
        match["$or"] = search

    theme = str(params.get("theme") or "").strip().lower()
    if theme == "other":
        nor = build_other_nor()
        if nor:
            match.update(nor)
    elif theme:
        _and(match, {"$or": build_theme_or(theme)})

    series_filter = build_series_filter(params.get("series"))
    if series_filter:
        _and(match, series_filter)

    return match


# ----- /api/minifigs parent theme codes -----

def parent_variants(code: str) -> List[str]:
    """Item-number prefixes that belong to one parent theme code."""
    c = (code or "").strip().lower()
    if c.startswith("col"):
        return [c]
    variants = {
        "hp": ["hp", "hpt", "hpo"],
        "ij": ["ij", "iaj"],
        "jw": ["jw", "jp"],
        "njo": ["njo", "nin", "nps", "nj"],
        "son": ["son", "sonic"],
    }
    return variants.get(c, [c])


def build_minifig_query(params: Mapping[str, Any]) -> Dict[str, Any]:
    where: Dict[str, Any] = {"type": str(params.get("type") or "MINIFIG")}

    if truthy(params.get("inStock")):
        where["qty"] = {"$gt": 0}

    q = str(params.get("q") or "").strip()
    if q:
        esc = re.escape(q)
        _and(where, {"$or": [
            {"name": {"$regex": esc, "$options": "i"}},
            {"itemNo": {"$regex": esc, "$options": "i"}},
        ]})

    codes: List[str] = []
    if params.get("theme"):
        codes.append(str(params["theme"]))
    if params.get("themes"):
        codes.extend(str(params["themes"]).split(","))
    codes = [c.strip().lower() for c in codes if c and c.strip()]

    theme_or: List[dict] = []
    for code in codes:
        variants = parent_variants(code)
        theme_or.append({"themeCode": {"$in": variants}})
        theme_or.extend({"itemNo": {"$regex": "^" + re.escape(v), "$options": "i"}} for v in variants)
    if theme_or:
        _and(where, {"$or": theme_or})

    return where


# ----- stats -----

def minifig_match(include_stockroom: bool = False) -> Dict[str, Any]:
    """Broad "this is a minifig for sale" match across the different document layouts."""
    clauses: List[dict] = [
        {"$or": [
            {"type": {"$regex": "minifig", "$options": "i"}},
            {"item.type": {"$regex": "minifig", "$options": "i"}},
            {"category": {"$regex": "minifig", "$options": "i"}},
            {"isMinifig": True},
        ]},
    ]
    if not include_stockroom:
        clauses.append({"$nor": [
            {"stockroom": True},
            {"is_stock_room": True},
            {"stockroom_id": {"$in": ["A", "B", "C"]}},
        ]})
    clauses.append({"$or": [
        {"qty": {"$gt": 0}},
        {"quantity": {"$gt": 0}},
        {"stock": {"$gt": 0}},
    ]})
    return {"$and": clauses}


def _positive_or(field: str, fallback: Any) -> dict:
    return {"$cond": [{"$gt": [{"$ifNull": [field, 0]}, 0]}, field, fallback]}


# First positive of qty, quantity and stock; 0 when none is.
QUANTITY_EXPR = _positive_or("$qty", _positive_or("$quantity", _positive_or("$stock", 0)))


def quantity_totals_pipeline(match: Mapping[str, Any]) -> List[dict]:
    """Aggregation that counts matching lots and sums their quantities."""
    return [
        {"$match": dict(match)},
        {"$group": {"_id": None, "lots": {"$sum": 1}, "items": {"$sum": QUANTITY_EXPR}}},
    ]
