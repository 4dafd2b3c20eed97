"""Mongo repositories against mongomock's in-memory pymongo backend."""

import mongomock
import pytest
from bson import ObjectId

from database import create_document, ensure_indexes, serialize
from errors import Conflict, InsufficientStock
from repositories import Repositories
from schemas import Category, CreateOrderRequest, Order, OrderItem, OrderItemRequest, Product, User
from services import OrderService


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def repos(db):
    return Repositories.from_db(db)


def _product(repos, title="Race Ski", price=100.0, stock=3, category="", **fields):
    return repos.products.create(Product(
        title=title, price=price, stock=stock, category=category,
        image_url="https://img.example/p.jpg", **fields,
    ))


def _user(email="anna@example.com", username="anna"):
    return User(email=email, username=username, first_name="Anna", last_name="Berg")


def test_serialize_converts_nested_object_ids():
    oid, other = ObjectId(), ObjectId()
    doc = serialize({"_id": oid, "items": [{"product": other}], "meta": {"ref": oid}, "n": 1})
    assert doc == {"_id": str(oid), "items": [{"product": str(other)}], "meta": {"ref": str(oid)}, "n": 1}
    assert serialize(None) is None


def test_create_document_adds_timestamps(db):
    doc_id = create_document("category", Category(name="Skis"), database=db)
    stored = db["category"].find_one({"_id": ObjectId(doc_id)})
    assert stored["name"] == "Skis"
    assert stored["created_at"] == stored["updated_at"]


class TestUserRepository:

    def test_lookup_by_email_is_case_insensitive(self, repos):
        created = repos.users.create(_user())
        assert repos.users.get_by_email(" Anna@Example.COM ")["_id"] == created["_id"]

    def test_duplicate_email_is_conflict(self, repos):
        repos.users.create(_user())
        with pytest.raises(Conflict, match="already exists"):
            repos.users.create(_user(username="anna2"))

    def test_token_round_trip(self, repos):
        user = repos.users.create(_user())
        repos.users.set_token(user["_id"], "abc123")
        assert repos.users.get_by_token("abc123")["_id"] == user["_id"]
        assert repos.users.get_by_token("") is None


class TestCategoryRepository:

    def test_duplicate_name_is_conflict(self, repos):
        repos.categories.create(Category(name="Skis"))
        with pytest.raises(Conflict):
            repos.categories.create(Category(name="Skis"))

    def test_unknown_or_malformed_id(self, repos):
        assert repos.categories.get_by_id("not-an-id") is None
        assert repos.categories.delete(str(ObjectId())) is False


class TestProductRepository:

    def test_category_is_embedded(self, repos):
        skis = repos.categories.create(Category(name="Skis"))
        product = _product(repos, category=skis["_id"])
        orphan = _product(repos, title="Orphan", category=str(ObjectId()))

        assert repos.products.get_by_id(product["_id"])["category"] == {"_id": skis["_id"], "name": "Skis"}
        assert repos.products.get_by_id(orphan["_id"])["category"] is None

    def test_list_runs_query_and_sort(self, repos):
        _product(repos, title="Cheap", price=10.0)
        _product(repos, title="Dear", price=900.0)
        _product(repos, title="Mid", price=300.0)

        products = repos.products.list({"price": {"$gte": 100.0}}, [("price", -1)])

        assert [p["title"] for p in products] == ["Dear", "Mid"]

    def test_reserve_takes_stock_only_when_available(self, repos):
        product = _product(repos, stock=3)

        assert repos.products.reserve_stock(product["_id"], 2) is True
        assert repos.products.get_by_id(product["_id"])["stock"] == 1
        assert repos.products.reserve_stock(product["_id"], 2) is False
        assert repos.products.get_by_id(product["_id"])["stock"] == 1
        assert repos.products.reserve_stock(product["_id"], 1) is True
        assert repos.products.reserve_stock(product["_id"], 1) is False
        assert repos.products.get_by_id(product["_id"])["stock"] == 0

    def test_reserve_unknown_product(self, repos):
        assert repos.products.reserve_stock(str(ObjectId()), 1) is False
        assert repos.products.reserve_stock("not-an-id", 1) is False

    def test_release_gives_stock_back(self, repos):
        product = _product(repos, stock=3)
        repos.products.reserve_stock(product["_id"], 3)
        repos.products.release_stock(product["_id"], 2)
        assert repos.products.get_by_id(product["_id"])["stock"] == 2

    def test_update_unknown_product(self, repos):
        assert repos.products.update(str(ObjectId()), {"price": 1.0}) is None

    def test_distinct_skips_empty_values(self, repos):
        _product(repos, title="A", brand="Atomic")
        _product(repos, title="B", brand="Head")
        _product(repos, title="C", brand="Atomic")
        _product(repos, title="D")
        repos.products.update(_product(repos, title="E")["_id"], {"brand": ""})

        assert sorted(repos.products.distinct("brand")) == ["Atomic", "Head"]


class TestOrderRepository:

    def _order(self, repos, user_id, *lines):
        items = [OrderItem(product_id=pid, title=title, price=1.0, quantity=qty) for pid, title, qty in lines]
        return repos.orders.create(Order(user_id=user_id, items=items, total_amount=float(len(items))))

    def test_sales_by_product(self, repos):
        self._order(repos, "u1", ("p1", "Race Ski", 1), ("p2", "Pole", 4))
        self._order(repos, "u2", ("p1", "Race Ski", 2))
        self._order(repos, "u2", ("p3", "Wax", 5), ("p2", "Pole", 3))

        assert repos.orders.sales_by_product() == [
            {"product_id": "p2", "title": "Pole", "quantity": 7},
            {"product_id": "p3", "title": "Wax", "quantity": 5},
            {"product_id": "p1", "title": "Race Ski", "quantity": 3},
        ]
        assert repos.orders.sales_by_product("u1") == [
            {"product_id": "p2", "title": "Pole", "quantity": 4},
            {"product_id": "p1", "title": "Race Ski", "quantity": 1},
        ]

    def test_list_by_user(self, repos):
        order = self._order(repos, "u1", ("p1", "Race Ski", 1))
        self._order(repos, "u2", ("p1", "Race Ski", 1))

        orders = repos.orders.list_by_user("u1")

        assert [o["_id"] for o in orders] == [order["_id"]]
        assert orders[0]["items"][0] == {"product_id": "p1", "title": "Race Ski", "price": 1.0, "quantity": 1}


class TestOrderPlacementOnMongo:

    def _request(self, product_id, quantity, total):
        return CreateOrderRequest(items=[OrderItemRequest(product_id=product_id, quantity=quantity)], total_amount=total)

    def test_stock_follows_orders(self, repos):
        product = _product(repos, stock=3)
        service = OrderService(repos)

        order = service.create_order("u1", self._request(product["_id"], 2, 200.0))
        assert order["total_amount"] == 200.0
        assert repos.products.get_by_id(product["_id"])["stock"] == 1

        with pytest.raises(InsufficientStock, match="Available: 1"):
            service.create_order("u1", self._request(product["_id"], 2, 200.0))
        assert repos.products.get_by_id(product["_id"])["stock"] == 1
        assert len(repos.orders.list_by_user("u1")) == 1
