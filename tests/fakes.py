"""In-memory fake repositories for testing.

These expose the same methods as the Mongo repositories but keep every
document in a dict. Documents come back as copies, like serialized Mongo
results, so callers can't mutate the store by accident.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone

from bson import ObjectId

from errors import Conflict
from repositories import Repositories
from schemas import Category, Order, Product, User

_EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


class _Store:

    def __init__(self) -> None:
        self._docs: dict[str, dict] = {}
        self._clock = 0

    def insert(self, doc: dict) -> dict:
        # strictly increasing timestamps keep "newest first" deterministic
        self._clock += 1
        stamp = _EPOCH + timedelta(seconds=self._clock)
        doc = {"_id": str(ObjectId()), **doc, "created_at": stamp, "updated_at": stamp}
        self._docs[doc["_id"]] = doc
        return copy.deepcopy(doc)

    def get(self, doc_id: str) -> dict | None:
        doc = self._docs.get(doc_id)
        return copy.deepcopy(doc) if doc else None

    def newest_first(self, docs) -> list[dict]:
        return [copy.deepcopy(d) for d in sorted(docs, key=lambda d: d["created_at"], reverse=True)]


class FakeUserRepository(_Store):

    def get_by_id(self, user_id: str) -> dict | None:
        return self.get(user_id)

    def get_by_email(self, email: str) -> dict | None:
        return next((copy.deepcopy(u) for u in self._docs.values() if u["email"] == email.strip().lower()), None)

    def get_by_username(self, username: str) -> dict | None:
        return next((copy.deepcopy(u) for u in self._docs.values() if u["username"] == username), None)

    def get_by_token(self, token: str) -> dict | None:
        if not token:
            return None
        return next((copy.deepcopy(u) for u in self._docs.values() if u.get("token") == token), None)

    def list_by_role(self, role: str) -> list[dict]:
        return self.newest_first(u for u in self._docs.values() if u["role"] == role)

    def create(self, user: User) -> dict:
        if self.get_by_email(user.email) or self.get_by_username(user.username):
            raise Conflict("User already exists")
        return self.insert(user.model_dump())

    def update(self, user_id: str, fields: dict) -> dict | None:
        if user_id not in self._docs:
            return None
        self._docs[user_id].update(fields)
        return self.get(user_id)

    def set_token(self, user_id: str, token: str) -> None:
        self._docs[user_id]["token"] = token

    def add(self, role: str = "customer", token: str | None = None, **fields) -> dict:
        """Test helper: insert a user directly, bypassing registration."""
        n = len(self._docs) + 1
        user = User(
            email=fields.get("email", f"user{n}@example.com"),
            username=fields.get("username", f"user{n}"),
            first_name=fields.get("first_name", "Test"),
            last_name=fields.get("last_name", "User"),
            role=role,
            token=token,
        )
        return self.insert(user.model_dump())


class FakeCategoryRepository(_Store):

    def list(self) -> list[dict]:
        return self.newest_first(self._docs.values())

    def get_by_id(self, category_id: str) -> dict | None:
        return self.get(category_id)

    def get_by_ids(self, category_ids) -> list[dict]:
        return [self.get(i) for i in category_ids if i in self._docs]

    def get_by_name(self, name: str) -> dict | None:
        return next((copy.deepcopy(c) for c in self._docs.values() if c["name"] == name.strip()), None)

    def create(self, category: Category) -> dict:
        if self.get_by_name(category.name):
            raise Conflict("Category name already exists")
        return self.insert(category.model_dump())

    def update(self, category_id: str, name: str) -> dict | None:
        if category_id not in self._docs:
            return None
        self._docs[category_id]["name"] = name
        return self.get(category_id)

    def delete(self, category_id: str) -> bool:
        return self._docs.pop(category_id, None) is not None

    def add(self, name: str) -> dict:
        return self.create(Category(name=name))


class FakeProductRepository(_Store):
    """Product store whose stock reservation is atomic under a lock.

    Queries are not evaluated; ``list`` records the last query and sort it
    received so tests can assert what the service asked for.
    """

    def __init__(self, categories: FakeCategoryRepository) -> None:
        super().__init__()
        self.categories = categories
        self._lock = threading.Lock()
        self.last_query: dict | None = None
        self.last_sort: list | None = None

    def _populate(self, product: dict | None) -> dict | None:
        if product is None:
            return None
        category = self.categories.get_by_id(product.get("category") or "")
        product["category"] = {"_id": category["_id"], "name": category["name"]} if category else None
        return product

    def list(self, query: dict | None = None, sort: list | None = None) -> list[dict]:
        self.last_query, self.last_sort = query, sort
        products = [self._populate(copy.deepcopy(p)) for p in self._docs.values()]
        for key, direction in reversed(sort or []):
            products.sort(key=lambda p: p[key], reverse=direction < 0)
        return products

    def list_by_category(self, category_id: str) -> list[dict]:
        matches = self.newest_first(p for p in self._docs.values() if p["category"] == category_id)
        return [self._populate(p) for p in matches]

    def get_by_id(self, product_id: str) -> dict | None:
        return self._populate(self.get(product_id))

    def get_by_ids(self, product_ids) -> list[dict]:
        return [self.get_by_id(i) for i in product_ids if i in self._docs]

    def create(self, product: Product) -> dict:
        return self._populate(self.insert(product.model_dump()))

    def update(self, product_id: str, fields: dict) -> dict | None:
        if product_id not in self._docs:
            return None
        self._docs[product_id].update(fields)
        return self.get_by_id(product_id)

    def delete(self, product_id: str) -> bool:
        return self._docs.pop(product_id, None) is not None

    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            product = self._docs.get(product_id)
            if product is None or product["stock"] < quantity:
                return False
            product["stock"] -= quantity
            return True

    def release_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self._docs[product_id]["stock"] += quantity

    def distinct(self, field: str) -> list:
        return list({p[field] for p in self._docs.values() if p.get(field) not in (None, "")})

    def stock_of(self, product_id: str) -> int:
        return self._docs[product_id]["stock"]

    def add(self, title: str, price: float, stock: int, category: str = "", **fields) -> dict:
        doc = dict(
            title=title, price=price, stock=stock, category=category, image_url="https://img.example/p.jpg",
            gender=None, length=None, size=None, brand=None, color=None,
        )
        doc.update(fields)
        return self.insert(doc)


class FakeOrderRepository(_Store):

    def __init__(self) -> None:
        super().__init__()
        self.fail_next_insert = False

    def create(self, order: Order) -> dict:
        if self.fail_next_insert:
            self.fail_next_insert = False
            raise RuntimeError("write concern error")
        return self.insert(order.model_dump())

    def list_by_user(self, user_id: str) -> list[dict]:
        return self.newest_first(o for o in self._docs.values() if o["user_id"] == user_id)

    def all(self) -> list[dict]:
        return self.newest_first(self._docs.values())

    def sales_by_product(self, user_id: str | None = None) -> list[dict]:
        totals: dict[str, dict] = {}
        for order in self._docs.values():
            if user_id and order["user_id"] != user_id:
                continue
            for item in order["items"]:
                row = totals.setdefault(item["product_id"], {
                    "product_id": item["product_id"], "title": item["title"], "quantity": 0,
                })
                row["quantity"] += item["quantity"]
        return sorted(totals.values(), key=lambda r: r["quantity"], reverse=True)


def make_repositories() -> Repositories:
    categories = FakeCategoryRepository()
    return Repositories(
        users=FakeUserRepository(),
        categories=categories,
        products=FakeProductRepository(categories),
        orders=FakeOrderRepository(),
    )


class FakeChatClient:
    """Stands in for ChatClient: returns a canned reply and records prompts."""

    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[list[dict]] = []

    def complete(self, messages: list[dict], max_tokens: int) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply
