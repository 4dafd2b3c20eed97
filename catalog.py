"""
Product catalog query construction

Turns the flat set of optional catalog filters into a pymongo query and sort
specification. Dimensions are ANDed; the brand and color lists are ORed
within their field.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

SortSpec = List[Tuple[str, int]]

NEWEST_FIRST: SortSpec = [("created_at", -1)]

SORT_OPTIONS: Dict[str, SortSpec] = {
    "newest": NEWEST_FIRST,
    "price-asc": [("price", 1)],
    "price-desc": [("price", -1)],
    "name": [("title", 1)],
}


class ProductFilters(BaseModel):
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_length: Optional[float] = None
    max_length: Optional[float] = None
    size: Optional[str] = None
    brand: Optional[str] = None
    color: Optional[str] = None
    search: Optional[str] = None
    gender: Optional[str] = None
    sort: Optional[str] = None


def _range(low: Optional[float], high: Optional[float]) -> Optional[Dict[str, float]]:
    bounds = {}
    if low is not None:
        bounds["$gte"] = low
    if high is not None:
        bounds["$lte"] = high
    return bounds or None


def _any_of(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Comma separated values as case-insensitive substring alternatives."""
    if not raw or raw.strip().lower() == "all":
        return None
    values = [v.strip() for v in raw.split(",") if v.strip()]
    if not values:
        return None
    return {"$in": [re.compile(re.escape(v), re.IGNORECASE) for v in values]}


def build_product_query(filters: ProductFilters) -> Tuple[Dict[str, Any], SortSpec]:
    query: Dict[str, Any] = {}

    if filters.category:
        query["category"] = filters.category

    price = _range(filters.min_price, filters.max_price)
    if price:
        query["price"] = price

    length = _range(filters.min_length, filters.max_length)
    if length:
        query["length"] = length

    if filters.search and filters.search.strip():
        query["title"] = {"$regex": re.escape(filters.search.strip()), "$options": "i"}

    gender = (filters.gender or "").strip().lower()
    if gender and gender != "all":
        # "women" is the legacy spelling still present on older products
        query["gender"] = {"$in": ["woman", "women"]} if gender == "woman" else gender

    if filters.size and filters.size.strip():
        query["size"] = {"$regex": f"^{re.escape(filters.size.strip())}$", "$options": "i"}

    brand = _any_of(filters.brand)
    if brand:
        query["brand"] = brand

    color = _any_of(filters.color)
    if color:
        query["color"] = color

    sort = SORT_OPTIONS.get((filters.sort or "").strip(), NEWEST_FIRST)
    return query, sort
