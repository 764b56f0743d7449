"""
JSON shapes returned by the API. Keys are camelCase, as the storefront expects.
"""
from typing import Dict, Optional

from models import Account, CartLine, Category, Favorite, Order, OrderLine, Rating


def _iso(value):
    return value.isoformat() if value is not None else None


def account_to_dict(account: Account):
    # password_hash never leaves the server
    return {
        "id": account.id,
        "name": account.name,
        "email": account.email,
        "role": account.role,
        "addressStreet": account.address_street,
        "addressCity": account.address_city,
        "addressState": account.address_state,
        "addressZip": account.address_zip,
        "addressCountry": account.address_country,
        "createdAt": _iso(account.created_at),
    }


def address_to_dict(account: Account):
    return {
        "addressStreet": account.address_street,
        "addressCity": account.address_city,
        "addressState": account.address_state,
        "addressZip": account.address_zip,
        "addressCountry": account.address_country,
    }


def category_to_dict(category: Category, brief: bool = False):
    data = {
        "id": category.id,
        "name": category.name,
        "price": category.price,
        "size": category.size,
        "material": category.material,
        "color": category.color,
        "description": category.description,
        "images": category.image_urls,
        "createdAt": _iso(category.created_at),
    }
    if brief:
        return {k: data[k] for k in ("id", "name", "price", "description", "images")}
    return data


def cart_line_to_dict(line: CartLine):
    category = line.category
    return {
        "id": line.id,
        "userId": line.account_id,
        "categoryId": line.category_id,
        "quantity": line.quantity,
        "createdAt": _iso(line.created_at),
        "updatedAt": _iso(line.updated_at),
        "category": {
            "id": category.id,
            "name": category.name,
            "price": category.price,
            "size": category.size,
            "material": category.material,
            "color": category.color,
            "images": category.image_urls,
        },
        "subtotal": round(category.price * line.quantity, 2),
    }


def cart_to_dict(lines):
    items = [cart_line_to_dict(line) for line in lines]
    return {
        "items": items,
        "total": round(sum(item["subtotal"] for item in items), 2),
        "totalItems": sum(item["quantity"] for item in items),
    }


def order_line_to_dict(line: OrderLine, categories: Dict[int, Category]):
    category = categories.get(line.category_id)
    return {
        "id": line.id,
        "categoryId": line.category_id,
        "quantity": line.quantity,
        "price": line.price,
        "category": category_to_dict(category) if category is not None else None,
    }


def order_to_dict(order: Order, categories: Optional[Dict[int, Category]] = None):
    data = {
        "id": order.id,
        "totalAmount": order.total_amount,
        "status": order.status,
        "paymentMethod": order.payment_method,
        "paymentStatus": order.payment_status,
        "shippingAddressStreet": order.shipping_address_street,
        "shippingAddressCity": order.shipping_address_city,
        "shippingAddressState": order.shipping_address_state,
        "shippingAddressZip": order.shipping_address_zip,
        "shippingAddressCountry": order.shipping_address_country,
        "createdAt": _iso(order.created_at),
    }
    if categories is not None:
        data["items"] = [order_line_to_dict(line, categories) for line in order.lines]
    return data


def favorite_to_dict(favorite: Favorite):
    category = favorite.category
    return {
        "id": favorite.id,
        "userId": favorite.account_id,
        "categoryId": favorite.category_id,
        "category": {
            "id": category.id,
            "name": category.name,
            "price": category.price,
            "size": category.size,
            "material": category.material,
            "color": category.color,
            "images": category.image_urls,
        },
        "createdAt": _iso(favorite.created_at),
    }


def rating_to_dict(rating: Rating):
    return {
        "id": rating.id,
        "userId": rating.account_id,
        "userName": rating.account.name if rating.account is not None else None,
        "categoryId": rating.category_id,
        "rating": rating.rating,
        "review": rating.review,
        "createdAt": _iso(rating.created_at),
    }
