import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import get_current_admin, get_current_user, get_password_hash, token_for, verify_password
from catalog_forms import CatalogForm, build_changes, build_draft, read_catalog_form
from checkout import checkout
from database import get_db, init_db, list_tables
from errors import AppError, Forbidden, NotFound, Unauthorized, ValidationError
from models import Account
from payments import PaymentGateway, get_payment_gateway, process_payment
from repositories import (
    AccountRepository,
    CartRepository,
    CategoryRepository,
    FavoriteRepository,
    OrderRepository,
    RatingRepository,
)
from schemas import (
    Address,
    CartAdd,
    CategoryFilters,
    CategoryNameQuery,
    CheckoutPayload,
    FavoritePayload,
    MAX_LINE_QUANTITY,
    LoginPayload,
    PaymentPayload,
    PaymentStatus,
    QuantityUpdate,
    RatingPayload,
    RatingUpdate,
    RegisterPayload,
)
from serializers import (
    account_to_dict,
    address_to_dict,
    cart_to_dict,
    category_to_dict,
    favorite_to_dict,
    order_to_dict,
    rating_to_dict,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Shope API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error translation

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def root():
    return {"message": "Shope Backend Running"}


# Simple health and db test
@app.get("/test")
def test_database():
    try:
        tables = list_tables()
        return {"backend": "ok", "db": "ok", "tables": tables}
    except Exception as e:
        logger.warning(f"Database probe failed: {e}")
        return {"backend": "ok", "db": "error"}


# Auth endpoints
@app.post("/auth/register", status_code=201)
def register(payload: RegisterPayload, db: Session = Depends(get_db)):
    address = Address(**payload.model_dump(include=set(Address.model_fields)))
    account = AccountRepository(db).create(
        payload.name, payload.email, get_password_hash(payload.password), address=address
    )
    db.commit()
    logger.info(f"Registered account {account.id}")
    return {"message": "User registered successfully", "userId": account.id}


@app.post("/auth/login")
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    user = AccountRepository(db).find_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    return {"message": "Login successful", "token": token_for(user), "user": account_to_dict(user)}


@app.post("/auth/logout")
def logout():
    # Tokens are stateless; the client drops its copy
    return {"message": "Logout successful"}


@app.put("/auth/address")
def update_address(payload: Address, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    account = AccountRepository(db).update_address(user.id, payload)
    db.commit()
    return {"message": "Address updated successfully", "user": account_to_dict(account)}


@app.get("/auth/address")
def get_address(user: Account = Depends(get_current_user)):
    return {"shippingAddress": address_to_dict(user)}


# Catalog endpoints
@app.get("/categories")
def list_categories(
    name: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    size: Optional[str] = None,
    material: Optional[str] = None,
    color: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = CategoryFilters(
        name=name, min_price=min_price, max_price=max_price, size=size,
        material=material, color=color, limit=limit, offset=offset,
    )
    rows, total = CategoryRepository(db).search(filters)
    return {
        "categories": [category_to_dict(row) for row in rows],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(rows) < total,
        },
    }


@app.get("/categories/grouped")
def list_categories_grouped(db: Session = Depends(get_db)):
    groups = CategoryRepository(db).grouped()
    return {name: [category_to_dict(row, brief=True) for row in rows] for name, rows in groups.items()}


@app.post("/categories/names")
def categories_by_name(payload: CategoryNameQuery, user: Account = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    rows = CategoryRepository(db).by_name(payload.name)
    return {"categories": [category_to_dict(row) for row in rows]}


@app.post("/categories", status_code=201)
def create_category(form: CatalogForm = Depends(read_catalog_form), admin: Account = Depends(get_current_admin),
                    db: Session = Depends(get_db)):
    draft = build_draft(form)
    ids = CategoryRepository(db).create(draft)
    db.commit()
    logger.info(f"Catalog rows {ids} created by account {admin.id}")
    if draft.sizes:
        return {"message": "Categories created successfully", "categoryIds": ids, "sizesCreated": len(ids)}
    return {"message": "Category created successfully", "categoryId": ids[0]}


@app.put("/categories/{category_id}")
def update_category(category_id: int, form: CatalogForm = Depends(read_catalog_form),
                    admin: Account = Depends(get_current_admin), db: Session = Depends(get_db)):
    changes = build_changes(form)
    category = CategoryRepository(db).update(category_id, changes)
    db.commit()
    return {"message": "Category updated successfully", "category": category_to_dict(category)}


@app.delete("/categories/{category_id}")
def delete_category(category_id: int, admin: Account = Depends(get_current_admin), db: Session = Depends(get_db)):
    if not CategoryRepository(db).delete(category_id):
        raise NotFound("Category not found")
    db.commit()
    logger.info(f"Catalog row {category_id} deleted by account {admin.id}")
    return {"message": "Category deleted successfully"}


# Cart endpoints

def _resolve_category_ref(db: Session, ref) -> int:
    """Cart adds accept a catalog id or an exact catalog name."""
    if isinstance(ref, int):
        return ref
    ref = str(ref).strip()
    if ref.isdigit():
        return int(ref)
    category_id = CategoryRepository(db).find_id_by_name(ref)
    if category_id is None:
        raise NotFound("Category not found")
    return category_id


def _add_to_cart(db: Session, user: Account, ref, quantity: int):
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"Quantity must not exceed {MAX_LINE_QUANTITY}")
    line_id = CartRepository(db).add_line(user.id, _resolve_category_ref(db, ref), quantity)
    db.commit()
    return {"message": "Item added to cart", "cartItemId": line_id}


def _owned_line(carts: CartRepository, line_id: int, user: Account, verb: str):
    line = carts.get_line(line_id)
    if line is None:
        raise NotFound("Cart item not found")
    if line.account_id != user.id:
        raise Forbidden(f"You can only {verb} your own cart items")
    return line


def _update_line(db: Session, user: Account, line_id: int, quantity: int):
    if not 0 <= quantity <= MAX_LINE_QUANTITY:
        raise ValidationError("Valid quantity is required")
    carts = CartRepository(db)
    _owned_line(carts, line_id, user, "update")
    if not carts.set_quantity(line_id, quantity):
        raise NotFound("Cart item not found")
    db.commit()
    return {"message": "Item removed from cart" if quantity == 0 else "Cart item updated"}


def _update_line_by_category(db: Session, user: Account, category_id: int, quantity: int):
    if not 0 <= quantity <= MAX_LINE_QUANTITY:
        raise ValidationError("Valid quantity is required")
    if not CartRepository(db).set_quantity_by_category(user.id, category_id, quantity):
        raise NotFound("Cart item not found")
    db.commit()
    return {"message": "Item removed from cart" if quantity == 0 else "Cart item updated"}


def _remove_line(db: Session, user: Account, line_id: int):
    carts = CartRepository(db)
    _owned_line(carts, line_id, user, "remove")
    if not carts.remove(line_id):
        raise NotFound("Cart item not found")
    db.commit()
    return {"message": "Item removed from cart"}


def _remove_line_by_category(db: Session, user: Account, category_id: int):
    if not CartRepository(db).remove_by_category(user.id, category_id):
        raise NotFound("Item not found in cart")
    db.commit()
    return {"message": "Item removed from cart"}


@app.get("/cart")
def get_cart(user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_to_dict(CartRepository(db).get_cart(user.id))


@app.get("/cart/count")
def get_cart_count(user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": CartRepository(db).item_count(user.id)}


@app.delete("/cart")
def clear_cart(user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    removed = CartRepository(db).clear(user.id)
    db.commit()
    return {"message": "Cart cleared", "itemsRemoved": removed}


@app.post("/cart", status_code=201)
def add_to_cart(payload: CartAdd, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return _add_to_cart(db, user, payload.category_id, payload.quantity)


@app.post("/cart/add/{category_ref}", status_code=201)
def add_to_cart_by_path(category_ref: str, user: Account = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return _add_to_cart(db, user, category_ref, 1)


@app.post("/cart/add/{category_ref}/{quantity}", status_code=201)
def add_quantity_to_cart_by_path(category_ref: str, quantity: int, user: Account = Depends(get_current_user),
                                 db: Session = Depends(get_db)):
    return _add_to_cart(db, user, category_ref, quantity)


@app.post("/cart/checkout", status_code=201)
def checkout_cart(payload: CheckoutPayload, user: Account = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    order = checkout(db, user.id, payload)
    return {
        "message": "Order placed successfully",
        "orderId": order.id,
        "totalAmount": order.total_amount,
        "paymentMethod": order.payment_method,
        "nextStep": "Proceed to payment",
        "paymentUrl": f"/payment/screen/{order.id}",
    }


@app.put("/cart/update/{line_id}/{quantity}")
def update_cart_item_by_path(line_id: int, quantity: int, user: Account = Depends(get_current_user),
                             db: Session = Depends(get_db)):
    return _update_line(db, user, line_id, quantity)


@app.put("/cart/category/{category_id}")
def update_cart_item_by_category(category_id: int, payload: QuantityUpdate,
                                 user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return _update_line_by_category(db, user, category_id, payload.quantity)


@app.put("/cart/category/{category_id}/{quantity}")
def update_cart_item_by_category_path(category_id: int, quantity: int, user: Account = Depends(get_current_user),
                                      db: Session = Depends(get_db)):
    return _update_line_by_category(db, user, category_id, quantity)


@app.put("/cart/{line_id}")
def update_cart_item(line_id: int, payload: QuantityUpdate, user: Account = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    return _update_line(db, user, line_id, payload.quantity)


@app.delete("/cart/remove/{line_id}")
def remove_cart_item_by_path(line_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return _remove_line(db, user, line_id)


@app.delete("/cart/category/remove/{category_id}")
def remove_cart_category_by_path(category_id: int, user: Account = Depends(get_current_user),
                                 db: Session = Depends(get_db)):
    return _remove_line_by_category(db, user, category_id)


@app.delete("/cart/category/{category_id}")
def remove_cart_category(category_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return _remove_line_by_category(db, user, category_id)


@app.delete("/cart/{line_id}")
def remove_cart_item(line_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return _remove_line(db, user, line_id)


# Orders

def _with_catalog(db: Session, orders):
    category_ids = [line.category_id for order in orders for line in order.lines]
    return CategoryRepository(db).get_many(category_ids)


@app.post("/orders", status_code=201)
def place_order(payload: CheckoutPayload, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    order = checkout(db, user.id, payload)
    return {"message": "Order placed successfully", "order": order_to_dict(order)}


@app.get("/orders")
def list_orders(user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    orders = OrderRepository(db).list_for(user.id)
    categories = _with_catalog(db, orders)
    return {"orders": [order_to_dict(order, categories) for order in orders]}


@app.post("/orders/payment")
def pay_order(payload: PaymentPayload, user: Account = Depends(get_current_user), db: Session = Depends(get_db),
              gateway: PaymentGateway = Depends(get_payment_gateway)):
    order = process_payment(db, gateway, payload.order_id, user.id, payload.payment_details)
    if order.payment_status == PaymentStatus.completed:
        return {
            "message": "Payment processed successfully",
            "orderId": order.id,
            "paymentStatus": order.payment_status,
            "orderStatus": order.status,
        }
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Payment failed", "orderId": order.id, "paymentStatus": order.payment_status},
    )


@app.get("/orders/{order_id}")
def get_order(order_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderRepository(db).get_owned(order_id, user.id)
    return {"order": order_to_dict(order, _with_catalog(db, [order]))}


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    orders = OrderRepository(db)
    order = orders.cancel(orders.get_owned(order_id, user.id))
    db.commit()
    logger.info(f"Order {order.id} cancelled by account {user.id}")
    return {"message": "Order cancelled successfully", "orderId": order.id, "status": order.status}


# Payment screens
@app.get("/payment/screen/{order_id}")
def payment_screen(order_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderRepository(db).get_owned(order_id, user.id)
    return {
        "message": "Payment screen for order",
        "orderId": order.id,
        "totalAmount": order.total_amount,
        "paymentStatus": order.payment_status,
        "paymentUrl": "/orders/payment",
        "instructions": "POST {orderId} to the payment URL to complete payment",
    }


@app.get("/payment/success/{order_id}")
def payment_success(order_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderRepository(db).get_owned(order_id, user.id)
    return {"message": "Payment successful", "orderId": order.id, "status": order.payment_status}


@app.get("/payment/failure/{order_id}")
def payment_failure(order_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    order = OrderRepository(db).get_owned(order_id, user.id)
    return {"message": "Payment failed", "orderId": order.id, "status": order.payment_status}


# Favorites
@app.post("/favorites", status_code=201)
def add_favorite(payload: FavoritePayload, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    favorite = FavoriteRepository(db).add(user.id, payload.category_id)
    db.commit()
    return {
        "message": "Category added to favorites",
        "favoriteId": favorite.id,
        "favorite": {"id": favorite.id, "userId": user.id, "categoryId": favorite.category_id},
    }


@app.get("/favorites")
def list_favorites(user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    favorites = FavoriteRepository(db).list_for(user.id)
    return {"favorites": [favorite_to_dict(f) for f in favorites], "total": len(favorites)}


@app.post("/favorites/toggle")
def toggle_favorite(payload: FavoritePayload, user: Account = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    favorite = FavoriteRepository(db).toggle(user.id, payload.category_id)
    db.commit()
    if favorite is None:
        return {"message": "Category removed from favorites", "action": "removed", "isFavorited": False}
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "message": "Category added to favorites",
            "action": "added",
            "favoriteId": favorite.id,
            "isFavorited": True,
        },
    )


@app.get("/favorites/check/{category_id}")
def check_favorite(category_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"categoryId": category_id, "isFavorited": FavoriteRepository(db).is_favorited(user.id, category_id)}


@app.delete("/favorites/{category_id}")
def remove_favorite(category_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    if not FavoriteRepository(db).remove(user.id, category_id):
        raise NotFound("Favorite not found")
    db.commit()
    return {"message": "Category removed from favorites"}


# Ratings

def _owned_rating(ratings: RatingRepository, rating_id: int, user: Account, verb: str):
    row = ratings.get(rating_id)
    if row is None:
        raise NotFound("Rating not found")
    if row.account_id != user.id:
        raise Forbidden(f"You can only {verb} your own ratings")
    return row


@app.post("/ratings", status_code=201)
def add_rating(payload: RatingPayload, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    row = RatingRepository(db).create(user.id, payload.category_id, payload.rating, payload.review)
    db.commit()
    return {
        "message": "Rating added successfully",
        "ratingId": row.id,
        "rating": {
            "id": row.id,
            "userId": user.id,
            "categoryId": row.category_id,
            "rating": row.rating,
            "review": row.review,
        },
    }


@app.put("/ratings/{rating_id}")
def update_rating(rating_id: int, payload: RatingUpdate, user: Account = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    ratings = RatingRepository(db)
    ratings.update(_owned_rating(ratings, rating_id, user, "update"), payload.rating, payload.review)
    db.commit()
    return {"message": "Rating updated successfully"}


@app.delete("/ratings/{rating_id}")
def delete_rating(rating_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    ratings = RatingRepository(db)
    ratings.delete(_owned_rating(ratings, rating_id, user, "delete"))
    db.commit()
    return {"message": "Rating deleted successfully"}


@app.get("/ratings/category/{category_id}")
def category_ratings(category_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    ratings = RatingRepository(db)
    return {
        "ratings": [rating_to_dict(r) for r in ratings.by_category(category_id)],
        "statistics": ratings.statistics(category_id),
    }


@app.get("/ratings/user/{category_id}")
def user_ratings(category_id: int, user: Account = Depends(get_current_user), db: Session = Depends(get_db)):
    ratings = RatingRepository(db)
    return {
        "ratings": [rating_to_dict(r) for r in ratings.by_account_and_category(user.id, category_id)],
        "statistics": ratings.statistics(category_id),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
