"""
Services

Validation and orchestration for every API operation. Services receive the
repositories they need and return plain dicts ready to be sent as JSON.
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Any, Dict, List, Optional, Tuple

from catalog import ProductFilters, build_product_query
from errors import (
    CheckoutNotFound,
    Conflict,
    InsufficientStock,
    NotFound,
    TotalMismatch,
    Unauthorized,
    ValidationError,
)
from repositories import Repositories
from schemas import (
    Category,
    CategoryPayload,
    CreateOrderRequest,
    LoginPayload,
    Order,
    OrderItem,
    Product,
    ProductPayload,
    ProductUpdatePayload,
    ProfilePayload,
    RegisterPayload,
    User,
)

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6
HASH_ITERATIONS = 100_000
CATEGORY_NAME_MIN_LENGTH = 2
# Largest accepted difference between the client total and the server total.
TOTAL_TOLERANCE = 0.01


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), HASH_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored or "$" not in stored:
        return False
    salt = stored.split("$", 1)[0]
    return hmac.compare_digest(hash_password(password, salt), stored)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k not in ("password_hash", "token")}


class AuthService:
    def __init__(self, repos: Repositories):
        self.users = repos.users

    def _issue_token(self, user: Dict[str, Any]) -> str:
        token = secrets.token_hex(16)
        self.users.set_token(user["_id"], token)
        return token

    def register(self, payload: RegisterPayload) -> Tuple[Dict[str, Any], str]:
        if len(payload.password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
        email = payload.email.lower()
        if self.users.get_by_email(email):
            raise Conflict("Email already exists")
        if self.users.get_by_username(payload.username):
            raise Conflict("Username already exists")

        user = self.users.create(User(
            email=email,
            username=payload.username,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password_hash=hash_password(payload.password),
        ))
        logger.info("Registered user %s", user["_id"])
        return public_user(user), self._issue_token(user)

    def login(self, payload: LoginPayload) -> Tuple[Dict[str, Any], str]:
        user = self.users.get_by_email(payload.email)
        if not user or not verify_password(payload.password, user.get("password_hash")):
            raise Unauthorized("Invalid email or password")
        return public_user(user), self._issue_token(user)

    def authenticate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise Unauthorized("No token provided. Please include Authorization: Bearer <token>")
        user = self.users.get_by_token(token)
        if not user:
            raise Unauthorized("Invalid or expired token")
        return user

    def update_profile(self, user_id: str, payload: ProfilePayload) -> Dict[str, Any]:
        user = self.users.update(user_id, {"first_name": payload.first_name, "last_name": payload.last_name})
        if not user:
            raise NotFound("User not found")
        return public_user(user)


class CategoryService:
    def __init__(self, repos: Repositories):
        self.categories = repos.categories

    @staticmethod
    def _clean_name(payload: CategoryPayload) -> str:
        name = payload.name.strip()
        if len(name) < CATEGORY_NAME_MIN_LENGTH:
            raise ValidationError(f"Category name must be at least {CATEGORY_NAME_MIN_LENGTH} characters")
        return name

    def list(self) -> List[Dict[str, Any]]:
        return self.categories.list()

    def get(self, category_id: str) -> Dict[str, Any]:
        category = self.categories.get_by_id(category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def create(self, payload: CategoryPayload) -> Dict[str, Any]:
        name = self._clean_name(payload)
        if self.categories.get_by_name(name):
            raise Conflict("Category name already exists")
        return self.categories.create(Category(name=name))

    def update(self, category_id: str, payload: CategoryPayload) -> Dict[str, Any]:
        self.get(category_id)
        name = self._clean_name(payload)
        existing = self.categories.get_by_name(name)
        if existing and existing["_id"] != category_id:
            raise Conflict("Category name already exists")
        return self.categories.update(category_id, name)

    def delete(self, category_id: str) -> None:
        if not self.categories.delete(category_id):
            raise NotFound("Category not found")


def _natural_key(value: Any) -> list:
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", str(value))]


class ProductService:
    REQUIRED_FIELDS = ("title", "price", "category", "image_url", "stock")

    def __init__(self, repos: Repositories):
        self.products = repos.products
        self.categories = repos.categories

    def _require_category(self, category_id: str) -> None:
        if not self.categories.get_by_id(category_id):
            raise NotFound("Category not found")

    def list(self, filters: ProductFilters) -> List[Dict[str, Any]]:
        query, sort = build_product_query(filters)
        return self.products.list(query, sort)

    def get(self, product_id: str) -> Dict[str, Any]:
        product = self.products.get_by_id(product_id)
        if not product:
            raise NotFound("Product not found")
        return product

    def list_by_category(self, category_id: str) -> List[Dict[str, Any]]:
        return self.products.list_by_category(category_id)

    def create(self, payload: ProductPayload) -> Dict[str, Any]:
        self._require_category(payload.category)
        product = Product(**payload.model_dump())
        created = self.products.create(product)
        logger.info("Created product %s (%s)", created["_id"], created["title"])
        return created

    def update(self, product_id: str, payload: ProductUpdatePayload) -> Dict[str, Any]:
        self.get(product_id)
        fields = payload.model_dump(exclude_unset=True)
        # Required fields can't be cleared; optional ones are cleared by null.
        fields = {k: v for k, v in fields.items() if k not in self.REQUIRED_FIELDS or v not in (None, "")}
        if fields.get("category"):
            self._require_category(fields["category"])
        updated = self.products.update(product_id, fields)
        if not updated:
            raise NotFound("Product not found")
        return updated

    def delete(self, product_id: str) -> None:
        if not self.products.delete(product_id):
            raise NotFound("Product not found")

    def filter_options(self) -> Dict[str, List[Any]]:
        return {
            "brands": sorted(self.products.distinct("brand")),
            "colors": sorted(self.products.distinct("color")),
            "sizes": sorted(self.products.distinct("size"), key=_natural_key),
        }


class OrderService:
    def __init__(self, repos: Repositories):
        self.orders = repos.orders
        self.products = repos.products

    def create_order(self, user_id: str, request: CreateOrderRequest) -> Dict[str, Any]:
        """Validate a checkout request, reserve stock and record the order.

        Prices come from the catalog, never from the client. The client total
        is only compared against the computed one. Stock is taken with an
        atomic conditional decrement per line before the order is written,
        and given back if any later step fails, so concurrent checkouts can
        never oversell.
        """
        if not request.items:
            raise ValidationError("Order must have at least one item")

        lines: List[OrderItem] = []
        requested: Dict[str, int] = {}
        computed_total = 0.0

        for item in request.items:
            product = self.products.get_by_id(item.product_id)
            if not product:
                raise CheckoutNotFound(f"Product {item.product_id} not found")
            requested[product["_id"]] = requested.get(product["_id"], 0) + item.quantity
            if requested[product["_id"]] > product["stock"]:
                raise InsufficientStock(product["title"], product["stock"])
            lines.append(OrderItem(
                product_id=product["_id"],
                title=product["title"],
                price=product["price"],
                quantity=item.quantity,
            ))
            computed_total += product["price"] * item.quantity

        if abs(computed_total - request.total_amount) > TOTAL_TOLERANCE:
            raise TotalMismatch(request.total_amount, computed_total)

        self._reserve(lines)
        try:
            order = self.orders.create(Order(user_id=user_id, items=lines, total_amount=computed_total))
        except Exception:
            logger.warning("Order insert failed for user %s, releasing reserved stock", user_id)
            self._release(lines)
            raise

        logger.info("Order %s placed by user %s: %d lines, total %.2f",
                    order["_id"], user_id, len(lines), computed_total)
        return order

    def _reserve(self, lines: List[OrderItem]) -> None:
        reserved: List[OrderItem] = []
        for line in lines:
            try:
                taken = self.products.reserve_stock(line.product_id, line.quantity)
            except Exception:
                logger.warning("Stock reservation failed for product %s, rolling back %d lines",
                               line.product_id, len(reserved))
                self._release(reserved)
                raise
            if not taken:
                logger.warning("Stock reservation lost for product %s, rolling back %d lines",
                               line.product_id, len(reserved))
                self._release(reserved)
                current = self.products.get_by_id(line.product_id)
                raise InsufficientStock(line.title, current["stock"] if current else 0)
            reserved.append(line)

    def _release(self, lines: List[OrderItem]) -> None:
        for line in lines:
            self.products.release_stock(line.product_id, line.quantity)

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        orders = self.orders.list_by_user(user_id)
        product_ids = {item["product_id"] for order in orders for item in order["items"]}
        products = {p["_id"]: p for p in self.products.get_by_ids(product_ids)} if product_ids else {}
        for order in orders:
            for item in order["items"]:
                product = products.get(item["product_id"])
                item["product"] = {
                    "_id": product["_id"],
                    "title": product["title"],
                    "price": product["price"],
                    "image_url": product.get("image_url"),
                } if product else None
        return orders


class AdminService:
    def __init__(self, repos: Repositories):
        self.users = repos.users
        self.orders = repos.orders
        self.products = repos.products
        self.order_service = OrderService(repos)

    def list_customers(self) -> List[Dict[str, Any]]:
        return [public_user(u) for u in self.users.list_by_role("customer")]

    def customer_orders(self, user_id: str) -> List[Dict[str, Any]]:
        return self.order_service.list_for_user(user_id)

    def sales_by_product(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self.orders.sales_by_product(user_id)
        ids = [row["product_id"] for row in rows]
        products = {p["_id"]: p for p in self.products.get_by_ids(ids)} if ids else {}
        data = []
        for row in rows:
            product = products.get(row["product_id"])
            category = (product or {}).get("category") or {}
            data.append({
                "name": product["title"] if product else (row.get("title") or "Unknown"),
                "value": row["quantity"],
                "category": category.get("name") or "—",
            })
        return data
