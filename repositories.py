"""
Repositories

Thin wrappers over the Mongo collections. No business rules live here; they
only translate ids, run queries and hand back serialized documents.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import NEWEST_FIRST, SortSpec
from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import Conflict
from schemas import Category, Order, Product, User


def _object_ids(ids: Iterable[str]) -> list:
    return [oid for oid in (to_object_id(i) for i in ids) if oid is not None]


class UserRepository:
    collection = "user"

    def __init__(self, database: Database):
        self.db = database

    def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return serialize(self.db[self.collection].find_one({"_id": oid}))

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return serialize(self.db[self.collection].find_one({"email": email.strip().lower()}))

    def get_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return serialize(self.db[self.collection].find_one({"username": username}))

    def get_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        return serialize(self.db[self.collection].find_one({"token": token}))

    def list_by_role(self, role: str) -> List[Dict[str, Any]]:
        return get_documents(self.collection, {"role": role}, sort=NEWEST_FIRST, database=self.db)

    def create(self, user: User) -> Dict[str, Any]:
        try:
            user_id = create_document(self.collection, user, database=self.db)
        except DuplicateKeyError as exc:
            field = next(iter((exc.details or {}).get("keyPattern", {})), "user")
            raise Conflict(f"{field.capitalize()} already exists")
        return self.get_by_id(user_id)

    def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = self.db[self.collection].find_one_and_update(
            {"_id": oid},
            {"$set": {**fields, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)

    def set_token(self, user_id: str, token: str) -> None:
        self.db[self.collection].update_one({"_id": to_object_id(user_id)}, {"$set": {"token": token}})


class CategoryRepository:
    collection = "category"

    def __init__(self, database: Database):
        self.db = database

    def list(self) -> List[Dict[str, Any]]:
        return get_documents(self.collection, sort=NEWEST_FIRST, database=self.db)

    def get_by_id(self, category_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(category_id)
        if oid is None:
            return None
        return serialize(self.db[self.collection].find_one({"_id": oid}))

    def get_by_ids(self, category_ids: Iterable[str]) -> List[Dict[str, Any]]:
        return get_documents(self.collection, {"_id": {"$in": _object_ids(category_ids)}}, database=self.db)

    def get_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return serialize(self.db[self.collection].find_one({"name": name.strip()}))

    def create(self, category: Category) -> Dict[str, Any]:
        try:
            category_id = create_document(self.collection, category, database=self.db)
        except DuplicateKeyError:
            raise Conflict("Category name already exists")
        return self.get_by_id(category_id)

    def update(self, category_id: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.db[self.collection].find_one_and_update(
                {"_id": to_object_id(category_id)},
                {"$set": {"name": name, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise Conflict("Category name already exists")
        return serialize(doc)

    def delete(self, category_id: str) -> bool:
        oid = to_object_id(category_id)
        if oid is None:
            return False
        return self.db[self.collection].delete_one({"_id": oid}).deleted_count > 0


class ProductRepository:
    collection = "product"

    def __init__(self, database: Database, categories: CategoryRepository):
        self.db = database
        self.categories = categories

    def _with_categories(self, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace each category id with ``{_id, name}`` like a populate."""
        ids = {p.get("category") for p in products if p.get("category")}
        names = {c["_id"]: c["name"] for c in self.categories.get_by_ids(ids)} if ids else {}
        for product in products:
            category_id = product.get("category")
            product["category"] = {"_id": category_id, "name": names[category_id]} if category_id in names else None
        return products

    def list(self, query: Optional[Dict[str, Any]] = None, sort: SortSpec = NEWEST_FIRST) -> List[Dict[str, Any]]:
        return self._with_categories(get_documents(self.collection, query, sort=sort, database=self.db))

    def list_by_category(self, category_id: str) -> List[Dict[str, Any]]:
        return self.list({"category": category_id})

    def get_by_id(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        doc = serialize(self.db[self.collection].find_one({"_id": oid}))
        return self._with_categories([doc])[0] if doc else None

    def get_by_ids(self, product_ids: Iterable[str]) -> List[Dict[str, Any]]:
        return self.list({"_id": {"$in": _object_ids(product_ids)}})

    def create(self, product: Product) -> Dict[str, Any]:
        product_id = create_document(self.collection, product, database=self.db)
        return self.get_by_id(product_id)

    def update(self, product_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        result = self.db[self.collection].update_one({"_id": oid}, {"$set": {**fields, "updated_at": utcnow()}})
        if result.matched_count == 0:
            return None
        return self.get_by_id(product_id)

    def delete(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        return self.db[self.collection].delete_one({"_id": oid}).deleted_count > 0

    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Atomically take ``quantity`` units, only if that many are available."""
        doc = self.db[self.collection].find_one_and_update(
            {"_id": to_object_id(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        )
        return doc is not None

    def release_stock(self, product_id: str, quantity: int) -> None:
        self.db[self.collection].update_one(
            {"_id": to_object_id(product_id)},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        )

    def distinct(self, field: str) -> List[Any]:
        values = self.db[self.collection].distinct(field, {field: {"$exists": True, "$nin": [None, ""]}})
        return list(values)


class OrderRepository:
    collection = "order"

    def __init__(self, database: Database):
        self.db = database

    def create(self, order: Order) -> Dict[str, Any]:
        order_id = create_document(self.collection, order, database=self.db)
        return serialize(self.db[self.collection].find_one({"_id": to_object_id(order_id)}))

    def list_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.collection, {"user_id": user_id}, sort=NEWEST_FIRST, database=self.db)

    def sales_by_product(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Total quantity sold per product as ``{product_id, title, quantity}``."""
        pipeline: List[Dict[str, Any]] = []
        if user_id:
            pipeline.append({"$match": {"user_id": user_id}})
        pipeline.extend([
            {"$unwind": "$items"},
            {"$group": {
                "_id": "$items.product_id",
                "title": {"$last": "$items.title"},
                "quantity": {"$sum": "$items.quantity"},
            }},
            {"$sort": {"quantity": -1}},
        ])
        return [
            {"product_id": row["_id"], "title": row.get("title"), "quantity": row["quantity"]}
            for row in self.db[self.collection].aggregate(pipeline)
        ]


@dataclass
class Repositories:
    users: UserRepository
    categories: CategoryRepository
    products: ProductRepository
    orders: OrderRepository

    @classmethod
    def from_db(cls, database: Database) -> "Repositories":
        categories = CategoryRepository(database)
        return cls(
            users=UserRepository(database),
            categories=categories,
            products=ProductRepository(database, categories),
            orders=OrderRepository(database),
        )
