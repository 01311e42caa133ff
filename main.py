import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import catalog
import database
import orders
import reviews
import users
from auth import CurrentUser, VerificationOutcome, get_current_user, require_roles
from config import Settings, get_settings
from database import get_db
from errors import ConflictError, MarketplaceError
from notifications import Mailer, send_verification_email
from schemas import (
    CategoryCreateRequest,
    LoginRequest,
    PlaceOrderRequest,
    ProductCreateRequest,
    ProductUpdateRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    ReviewCreateRequest,
    Role,
    StatusUpdateRequest,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db = database.connect(settings)
    auth.ensure_admin(db, settings)
    yield
    database.disconnect()


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

admin_only = require_roles(Role.admin)
buyer_only = require_roles(Role.buyer)


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings)


# Helpers
def envelope(message: str, data: Any = None, status: str = "Success") -> dict:
    body = {"status": status, "message": message}
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(message, status="Fail"))


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return fail(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    return fail(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return fail(422, "; ".join(problems) or "Invalid request")


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return fail(500, "Internal server error")


@app.get("/")
def read_root():
    return {"message": "Marketplace backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# Auth
def _schedule_verification(background: BackgroundTasks, mailer: Mailer, settings: Settings, user: dict):
    token = auth.create_verification_token(settings, user)
    background.add_task(send_verification_email, mailer, settings, user["email"], token)


@app.post("/auth/register/buyer", status_code=201)
def register_buyer(payload: RegisterRequest, background: BackgroundTasks, db=Depends(get_db),
                   settings: Settings = Depends(get_settings), mailer: Mailer = Depends(get_mailer)):
    user = auth.register_buyer(db, payload.name, payload.email, payload.password)
    _schedule_verification(background, mailer, settings, user)
    return envelope("User registered successfully, check your email to verify your account", user)


@app.post("/auth/register/admin", status_code=201)
def register_admin(payload: RegisterRequest, db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    user = auth.register_admin(db, payload.name, payload.email, payload.password)
    logger.info("Admin %s registered admin %s", current.id, user["id"])
    return envelope("Admin registered successfully", user)


@app.post("/auth/login")
def login(payload: LoginRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    token = auth.login(db, settings, payload.email, payload.password)
    return envelope("Login successful", {"token": token, "token_type": "bearer"})


@app.post("/auth/verify/resend")
def resend_verification(background: BackgroundTasks, db=Depends(get_db), settings: Settings = Depends(get_settings),
                        mailer: Mailer = Depends(get_mailer), current: CurrentUser = Depends(buyer_only)):
    user = users.get_profile(db, current.id)
    if user["is_email_verified"]:
        raise ConflictError("Email address is already verified")
    _schedule_verification(background, mailer, settings, user)
    return envelope("Verification email sent")


@app.get("/auth/verify/{token}")
def verify_account(token: str, db=Depends(get_db), settings: Settings = Depends(get_settings),
                   current: CurrentUser = Depends(buyer_only)):
    outcome, user = auth.verify_account(db, settings, token, current.id)
    if outcome is VerificationOutcome.ALREADY_VERIFIED:
        message = "Email address already verified"
    else:
        message = "Email address verified successfully"
    return envelope(message, {"outcome": outcome.value, "user": user})


# Profile
@app.get("/user/profile")
def profile(db=Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    return envelope("Profile found", users.get_profile(db, current.id))


@app.patch("/user/profile")
def update_profile(payload: ProfileUpdateRequest, background: BackgroundTasks, db=Depends(get_db),
                   settings: Settings = Depends(get_settings), mailer: Mailer = Depends(get_mailer),
                   current: CurrentUser = Depends(get_current_user)):
    user, email_changed = users.update_profile(db, current.id, payload.name, payload.email, payload.currentPassword)
    message = "Profile updated successfully"
    if email_changed:
        _schedule_verification(background, mailer, settings, user)
        message += ", please verify your new email address"
    return envelope(message, user)


@app.get("/user/allusers")
def all_users(db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    found = users.list_users(db)
    return envelope(f"{len(found)} Users Found", found)


# Catalog
@app.get("/category")
def list_categories(db=Depends(get_db)):
    found = catalog.list_categories(db)
    if not found:
        return envelope("No categories found", [])
    return envelope("Categories retrieved", found)


@app.post("/category", status_code=201)
def create_category(payload: CategoryCreateRequest, db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    return envelope("Category Created Successfully", catalog.create_category(db, payload.name, payload.description))


@app.get("/product")
def list_products(db=Depends(get_db)):
    found = catalog.list_products(db)
    return envelope(f"{len(found)} Products Found", found)


@app.get("/product/featured")
def featured_products(db=Depends(get_db)):
    found = catalog.list_featured_products(db)
    return envelope(f"{len(found)} Featured Products Found", found)


@app.get("/product/search")
def search_products(
    name: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    category: Optional[str] = None,
    db=Depends(get_db),
):
    found = catalog.search_products(db, name=name, min_price=min_price, max_price=max_price, category=category)
    return envelope(f"{len(found)} Products Found", found)


@app.get("/product/category/{category_id}")
def products_by_category(category_id: str, db=Depends(get_db)):
    found = catalog.list_products_by_category(db, category_id)
    return envelope(f"{len(found)} Products Found", found)


@app.get("/product/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return envelope("Product found", catalog.get_product(db, product_id))


@app.post("/product", status_code=201)
def create_product(payload: ProductCreateRequest, db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    product = catalog.create_product(db, **payload.model_dump())
    return envelope("Product Created Successfully", product)


@app.patch("/product/featured/{product_id}")
def feature_product(product_id: str, db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    return envelope("Product is now featured", catalog.set_featured(db, product_id, True))


@app.patch("/product/unfeatured/{product_id}")
def unfeature_product(product_id: str, db=Depends(get_db), current: CurrentUser = Depends(admin_only)):
    return envelope("Product is no longer featured", catalog.set_featured(db, product_id, False))


@app.patch("/product/{product_id}")
def update_product(product_id: str, payload: ProductUpdateRequest, db=Depends(get_db),
                   current: CurrentUser = Depends(admin_only)):
    product = catalog.update_product(db, product_id, payload.model_dump(exclude_unset=True))
    return envelope("Product Updated Successfully", product)


# Orders
@app.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, db=Depends(get_db), current: CurrentUser = Depends(buyer_only)):
    result = orders.place_order(db, current.id, payload.products)
    return envelope("Order placed successfully", result)


@app.get("/orders")
def retrieve_orders(db=Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    found = orders.retrieve_orders(db, current.id, current.role)
    if not found:
        return envelope("0 Orders Found", [])
    return envelope("Success retrieving orders", found)


@app.get("/orders/history")
def order_history(db=Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    found = orders.view_order_history(db, current.id, current.role)
    if not found:
        return envelope("No order history found", [])
    return envelope("Order history retrieved", found)


@app.get("/orders/{order_id}")
def order_details(order_id: str, db=Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    return envelope("Order details retrieved", orders.order_details(db, order_id, current.id, current.role))


@app.patch("/orders/{order_id}")
def update_order_status(order_id: str, payload: StatusUpdateRequest, db=Depends(get_db),
                        mailer: Mailer = Depends(get_mailer), current: CurrentUser = Depends(admin_only)):
    result = orders.update_order_status(db, mailer, order_id, payload.newStatus, current.role)
    message = f"Order status updated to '{result['status']}'"
    if not result["notificationSent"]:
        message += ", but the buyer could not be notified by email"
    return envelope(message, result)


# Reviews
@app.post("/reviews", status_code=201)
def create_review(payload: ReviewCreateRequest, db=Depends(get_db), current: CurrentUser = Depends(buyer_only)):
    review = reviews.create_review(db, current.id, payload.productId, payload.rating, payload.comment)
    return envelope("Product reviewed successfully!", jsonable_encoder(review))


@app.get("/reviews/product/{product_id}")
def product_reviews(product_id: str, db=Depends(get_db)):
    result = reviews.retrieve_reviews(db, product_id)
    if not result["reviews"]:
        return envelope("No reviews yet for this product", result)
    return envelope(f"{len(result['reviews'])} Reviews Found", result)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
