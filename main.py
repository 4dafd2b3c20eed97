import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from catalog import ProductFilters
from database import db, ensure_indexes
from errors import Forbidden, ServiceUnavailable, StoreError
from guide import ChatClient, GuideChatService, RecommendationService
from repositories import Repositories
from schemas import (
    CategoryPayload,
    CreateOrderRequest,
    GuideChatPayload,
    LoginPayload,
    ProductPayload,
    ProductUpdatePayload,
    ProfilePayload,
    RecommendationPayload,
    RegisterPayload,
)
from seed import seed_catalog
from services import AdminService, AuthService, CategoryService, OrderService, ProductService, public_user

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
        if os.getenv("SEED_CATALOG", "1").lower() not in ("0", "false", "no"):
            seed_catalog(db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, data routes will answer 503")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def get_repositories() -> Repositories:
    if db is None:
        raise ServiceUnavailable("Database not available")
    return Repositories.from_db(db)


def get_chat_client() -> Optional[ChatClient]:
    return ChatClient.from_env()


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def current_user(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    repos: Repositories = Depends(get_repositories),
) -> dict:
    return AuthService(repos).authenticate(bearer_token(authorization))


def admin_user(user: dict = Depends(current_user)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden("Access denied. Admin role required.")
    return user


@app.get("/")
def read_root():
    return {"message": "Storefront API running"}


@app.get("/api/health")
def health():
    status = "disconnected"
    if db is not None:
        try:
            db.command("ping")
            status = "connected"
        except PyMongoError as e:
            logger.warning("Database ping failed: %s", e)
    return {
        "ok": True,
        "message": "Server is running",
        "database": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# Auth endpoints
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload, repos: Repositories = Depends(get_repositories)):
    user, token = AuthService(repos).register(payload)
    return {"message": "User registered successfully", "user": user, "token": token}


@app.post("/api/auth/login")
def login(payload: LoginPayload, repos: Repositories = Depends(get_repositories)):
    user, token = AuthService(repos).login(payload)
    return {"message": "Login successful", "user": user, "token": token}


@app.get("/api/auth/me")
def me(user: dict = Depends(current_user)):
    return {"user": public_user(user)}


@app.patch("/api/auth/me")
def update_me(payload: ProfilePayload, user: dict = Depends(current_user),
              repos: Repositories = Depends(get_repositories)):
    return {"user": AuthService(repos).update_profile(user["_id"], payload)}


# Category endpoints
@app.get("/api/categories")
def list_categories(repos: Repositories = Depends(get_repositories)):
    return {"categories": CategoryService(repos).list()}


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, repos: Repositories = Depends(get_repositories)):
    return {"category": CategoryService(repos).get(category_id)}


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryPayload, admin: dict = Depends(admin_user),
                    repos: Repositories = Depends(get_repositories)):
    category = CategoryService(repos).create(payload)
    return {"message": "Category created successfully", "category": category}


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, payload: CategoryPayload, admin: dict = Depends(admin_user),
                    repos: Repositories = Depends(get_repositories)):
    category = CategoryService(repos).update(category_id, payload)
    return {"message": "Category updated successfully", "category": category}


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(admin_user),
                    repos: Repositories = Depends(get_repositories)):
    CategoryService(repos).delete(category_id)
    return {"message": "Category deleted successfully"}


# Product endpoints
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    min_length: Optional[float] = Query(None, alias="minLength"),
    max_length: Optional[float] = Query(None, alias="maxLength"),
    size: Optional[str] = None,
    brand: Optional[str] = None,
    color: Optional[str] = None,
    search: Optional[str] = None,
    gender: Optional[str] = None,
    sort: Optional[str] = None,
    repos: Repositories = Depends(get_repositories),
):
    filters = ProductFilters(
        category=category, min_price=min_price, max_price=max_price,
        min_length=min_length, max_length=max_length, size=size,
        brand=brand, color=color, search=search, gender=gender, sort=sort,
    )
    return {"products": ProductService(repos).list(filters)}


@app.get("/api/products/filters/options")
def product_filter_options(repos: Repositories = Depends(get_repositories)):
    return ProductService(repos).filter_options()


@app.get("/api/products/category/{category_id}")
def products_by_category(category_id: str, repos: Repositories = Depends(get_repositories)):
    return {"products": ProductService(repos).list_by_category(category_id)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, repos: Repositories = Depends(get_repositories)):
    return {"product": ProductService(repos).get(product_id)}


@app.post("/api/products", status_code=201)
def create_product(payload: ProductPayload, admin: dict = Depends(admin_user),
                   repos: Repositories = Depends(get_repositories)):
    product = ProductService(repos).create(payload)
    return {"message": "Product created successfully", "product": product}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdatePayload, admin: dict = Depends(admin_user),
                   repos: Repositories = Depends(get_repositories)):
    product = ProductService(repos).update(product_id, payload)
    return {"message": "Product updated successfully", "product": product}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(admin_user),
                   repos: Repositories = Depends(get_repositories)):
    ProductService(repos).delete(product_id)
    return {"message": "Product deleted successfully"}


# Orders
@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user: dict = Depends(current_user),
                 repos: Repositories = Depends(get_repositories)):
    return {"order": OrderService(repos).create_order(user["_id"], payload)}


@app.get("/api/orders")
def list_orders(user: dict = Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return {"orders": OrderService(repos).list_for_user(user["_id"])}


# Recommendations and guide chat
@app.post("/api/recommendations")
def recommendations(payload: RecommendationPayload, user: dict = Depends(current_user),
                    repos: Repositories = Depends(get_repositories),
                    client: Optional[ChatClient] = Depends(get_chat_client)):
    service = RecommendationService(repos.products, client)
    return {"products": service.recommended_products(payload.product_ids)}


@app.post("/api/guide-chat")
def guide_chat(payload: GuideChatPayload, user: dict = Depends(current_user),
               repos: Repositories = Depends(get_repositories),
               client: Optional[ChatClient] = Depends(get_chat_client)):
    return GuideChatService(repos.products, client).reply(payload.messages)


# Admin
@app.get("/api/admin/customers")
def admin_customers(admin: dict = Depends(admin_user), repos: Repositories = Depends(get_repositories)):
    return {"customers": AdminService(repos).list_customers()}


@app.get("/api/admin/customers/{user_id}/orders")
def admin_customer_orders(user_id: str, admin: dict = Depends(admin_user),
                          repos: Repositories = Depends(get_repositories)):
    return {"orders": AdminService(repos).customer_orders(user_id)}


@app.get("/api/admin/statistics/sales-by-product")
def admin_sales_by_product(user_id: Optional[str] = Query(None, alias="userId"),
                           admin: dict = Depends(admin_user),
                           repos: Repositories = Depends(get_repositories)):
    return {"data": AdminService(repos).sales_by_product(user_id)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
