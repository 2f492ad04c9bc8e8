# listing_filters.py
"""
Translate GET /api/properties query parameters into a MongoDB predicate.

Only supplied parameters contribute a clause; clauses combine as a
conjunction (one key per field in the returned dict). A value that cannot
be parsed produces a clause matching no document.
"""

import re
from typing import Any, Dict, Mapping, Optional

from bson import ObjectId

from parsing import parse_float, parse_int

TEXT_PARAMS = ("title", "location", "city")
INT_PARAMS = ("bedrooms", "bathrooms")
RANGE_PARAMS = {
    "price": ("priceMin", "priceMax"),
    "areaSqFt": ("areaMin", "areaMax"),
}


def _match_nothing() -> Dict[str, Any]:
    return {"$in": []}


def _supplied(params: Mapping[str, str], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None or value == "":
        return None
    return value


def build_property_filter(params: Mapping[str, str]) -> Dict[str, Any]:
    query: Dict[str, Any] = {}

    for name in TEXT_PARAMS:
        value = _supplied(params, name)
        if value is not None:
            query[name] = {"$regex": re.escape(value), "$options": "i"}

    listing_type = _supplied(params, "type")
    if listing_type is not None:
        query["type"] = listing_type

    created_by = _supplied(params, "createdBy")
    if created_by is not None:
        query["createdBy"] = ObjectId(created_by) if ObjectId.is_valid(created_by) else _match_nothing()

    for name in INT_PARAMS:
        value = _supplied(params, name)
        if value is not None:
            parsed = parse_int(value)
            query[name] = parsed if parsed is not None else _match_nothing()

    for field, (low_param, high_param) in RANGE_PARAMS.items():
        bounds = {
            "$gte": _supplied(params, low_param),
            "$lte": _supplied(params, high_param),
        }
        if all(v is None for v in bounds.values()):
            continue
        clause: Dict[str, Any] = {}
        for op, raw in bounds.items():
            if raw is None:
                continue
            parsed = parse_float(raw)
            if parsed is None:
                clause = _match_nothing()
                break
            clause[op] = parsed
        query[field] = clause

    return query
