"""
Query building for the storefront and the back office.

UI filter state (search box, status dropdown, price range, sort, page) is
turned into a QueryPlan: a list of typed filters that are AND-ed together,
a sort key and a page window. Each filter renders its own Mongo fragment.
"""
import math
import re
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from schemas import ORDER_STATUSES

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100

ORDER_SEARCH_FIELDS = ("orderId", "customer.name", "customer.phone")
PRODUCT_SEARCH_FIELDS = ("name", "description", "tags")

ORDER_SORT_FIELDS = ("createdAt", "updatedAt", "orderId", "totalAmount", "totalItems", "status")
PRODUCT_SORT_FIELDS = ("createdAt", "updatedAt", "name", "price", "stock")


class QueryError(ValueError):
    """Raised when filter or paging parameters cannot be turned into a query."""


# ---------------------- Order numbering ----------------------

def format_order_id(sequence: int) -> str:
    return f"ORD-{sequence:06d}"


def next_order_id(db) -> str:
    """
    Allocate the next order id from the `counters` collection.

    The counter is bumped with a single find-and-increment, so two checkouts
    never receive the same number. On first use it starts from the number of
    orders already stored.
    """
    counters = db["counters"]
    if counters.find_one({"_id": "order"}) is None:
        try:
            counters.insert_one({"_id": "order", "seq": db["order"].count_documents({})})
        except DuplicateKeyError:
            pass
    doc = counters.find_one_and_update(
        {"_id": "order"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return format_order_id(doc["seq"])


# ---------------------- Filters ----------------------

class _Filter(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextMatch(_Filter):
    """Case-insensitive substring match against any of several fields."""
    kind: Literal["text"] = "text"
    text: str
    fields: Tuple[str, ...]

    def to_mongo(self) -> dict:
        pattern = re.escape(self.text)
        return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in self.fields]}


class AllTerms(_Filter):
    """Every term must match at least one of the fields."""
    kind: Literal["terms"] = "terms"
    terms: Tuple[str, ...]
    fields: Tuple[str, ...]

    def to_mongo(self) -> dict:
        return {"$and": [TextMatch(text=t, fields=self.fields).to_mongo() for t in self.terms]}


class FieldEquals(_Filter):
    kind: Literal["equals"] = "equals"
    field: str
    value: Union[bool, int, str]

    def to_mongo(self) -> dict:
        return {self.field: self.value}


class ItemCategory(_Filter):
    """Orders with at least one item from the given category."""
    kind: Literal["item_category"] = "item_category"
    category: str

    def to_mongo(self) -> dict:
        return {"items": {"$elemMatch": {"category": self.category}}}


class PriceRange(_Filter):
    kind: Literal["price_range"] = "price_range"
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    def to_mongo(self) -> dict:
        bounds = {}
        if self.min_price is not None:
            bounds["$gte"] = self.min_price
        if self.max_price is not None:
            bounds["$lte"] = self.max_price
        return {"price": bounds}


Filter = Union[TextMatch, AllTerms, FieldEquals, ItemCategory, PriceRange]


def split_terms(search: Optional[str]) -> Tuple[str, ...]:
    return tuple(t for t in (search or "").split() if t.strip())


# ---------------------- Pagination ----------------------

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_total(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            current_page=page,
            total_pages=math.ceil(total / limit),
            total=total,
            has_next=page * limit < total,
            has_prev=page > 1,
        )

    def to_dict(self, total_key: str) -> dict:
        return {
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            total_key: self.total,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


# ---------------------- Plans ----------------------

class QueryPlan(BaseModel):
    filters: List[Filter] = Field(default_factory=list)
    sort_by: str = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    def mongo_filter(self) -> dict:
        parts = [f.to_mongo() for f in self.filters]
        if not parts:
            return {}
        if len(parts) == 1:
            return parts[0]
        return {"$and": parts}

    def mongo_sort(self) -> List[Tuple[str, int]]:
        return [(self.sort_by, DESCENDING if self.sort_order == "desc" else ASCENDING)]

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def execute(self, collection) -> Tuple[list, Pagination]:
        query = self.mongo_filter()
        docs = list(collection.find(query).sort(self.mongo_sort()).skip(self.skip).limit(self.limit))
        total = collection.count_documents(query)
        return docs, Pagination.from_total(self.page, self.limit, total)


def _check_paging(sort_by: str, sort_order: str, page: int, limit: int, sort_fields: Tuple[str, ...]) -> None:
    if sort_by not in sort_fields:
        raise QueryError(f"Cannot sort by '{sort_by}'")
    if sort_order not in ("asc", "desc"):
        raise QueryError("sortOrder must be 'asc' or 'desc'")
    if page < 1:
        raise QueryError("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise QueryError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def build_order_query(
    search: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> QueryPlan:
    _check_paging(sort_by, sort_order, page, limit, ORDER_SORT_FIELDS)
    filters: List[Filter] = []
    if status:
        if status not in ORDER_STATUSES:
            raise QueryError(f"Unknown order status '{status}'")
        filters.append(FieldEquals(field="status", value=status))
    if category:
        filters.append(ItemCategory(category=category))
    if search:
        filters.append(TextMatch(text=search, fields=ORDER_SEARCH_FIELDS))
    return QueryPlan(filters=filters, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit)


def build_product_query(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    active_only: bool = True,
) -> QueryPlan:
    _check_paging(sort_by, sort_order, page, limit, PRODUCT_SORT_FIELDS)
    if min_price is not None and max_price is not None and min_price > max_price:
        raise QueryError("minPrice cannot be greater than maxPrice")
    filters: List[Filter] = []
    if active_only:
        filters.append(FieldEquals(field="isActive", value=True))
    if category and category != "all":
        filters.append(FieldEquals(field="category", value=category))
    if min_price is not None or max_price is not None:
        filters.append(PriceRange(min_price=min_price, max_price=max_price))
    terms = split_terms(search)
    if terms:
        filters.append(AllTerms(terms=terms, fields=PRODUCT_SEARCH_FIELDS))
    return QueryPlan(filters=filters, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit)
