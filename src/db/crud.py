# src/db/crud.py
from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from db import models
from db.platform import BlobStorage, DataClient
from utils.errors import NotFoundError, ValidationError

COMPLETED_ORDER_STATUSES = ("paid", "completed")
PAYMENT_METHODS = ("manual_transfer", "cod")
AVATAR_BUCKET = "avatars"


# ---------------------------
# Profiles
# ---------------------------


async def get_profile(client: DataClient, user_id: str) -> Optional[models.Profile]:
    """Return the profile record for an identity, or None."""
    rows = await client.select("profiles", {"id": user_id}, limit=1)
    return models.Profile.from_row(rows[0]) if rows else None


async def update_profile(
    client: DataClient,
    user_id: str,
    full_name: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> models.Profile:
    """
    Update the contact details of a profile, only provided fields are written.
    Empty strings are stored as NULL.
    """
    patch = {
        k: (v.strip() or None)
        for k, v in {
            "full_name": full_name,
            "phone": phone,
            "address": address,
            "avatar_url": avatar_url,
        }.items()
        if v is not None
    }
    if not patch:
        profile = await get_profile(client, user_id)
        if profile is None:
            raise NotFoundError("Profile not found.")
        return profile

    rows = await client.update("profiles", {"id": user_id}, patch)
    if not rows:
        raise NotFoundError("Profile not found.")
    return models.Profile.from_row(rows[0])


async def upload_avatar(
    client: DataClient,
    storage: BlobStorage,
    user_id: str,
    image: models.ImageFile,
) -> models.Profile:
    """Store the picture in the avatars bucket and point the profile at it."""
    if not image.data:
        raise ValidationError("The selected image is empty.")
    path = image.storage_path(user_id)
    await storage.upload(AVATAR_BUCKET, path, image.data)
    return await update_profile(
        client, user_id, avatar_url=storage.public_url(AVATAR_BUCKET, path)
    )


async def get_seller(client: DataClient, seller_id: str) -> Optional[models.Profile]:
    rows = await client.select("profiles", {"id": seller_id, "role": "seller"}, limit=1)
    return models.Profile.from_row(rows[0]) if rows else None


async def request_seller(
    client: DataClient, user_id: str, shop_name: str, description: str
) -> models.SellerRequest:
    """Ask an admin to promote the user to seller."""
    shop_name = (shop_name or "").strip()
    description = (description or "").strip()
    if not shop_name:
        raise ValidationError("Shop name is required.")
    if not description:
        raise ValidationError("Tell us about what you plan to sell.")
    rows = await client.insert(
        "seller_requests",
        [{"user_id": user_id, "shop_name": shop_name, "description": description}],
    )
    return models.SellerRequest.from_row(rows[0])


# ---------------------------
# Products
# ---------------------------


async def list_products(
    client: DataClient, query: str = "", category: Optional[str] = None
) -> List[models.Product]:
    """
    Newest products first, optionally limited to one category.
    A non-empty query keeps products whose name, description or category
    contains every word of the query (case-insensitive).
    """
    filters = {"category": category} if category else None
    rows = await client.select(
        "products", filters, order_by="created_at", descending=True
    )
    products = [models.Product.from_row(row) for row in rows]

    words = [w for w in (query or "").strip().lower().split() if w]
    if not words:
        return products

    def matches(p: models.Product) -> bool:
        haystack = f"{p.name} {p.description} {p.category}".lower()
        return all(w in haystack for w in words)

    return [p for p in products if matches(p)]


async def list_categories(client: DataClient) -> List[str]:
    """Categories that have at least one product, alphabetically."""
    rows = await client.select("products")
    return sorted({row["category"] for row in rows if row["category"]})


async def list_seller_products(
    client: DataClient, seller_id: str
) -> List[models.Product]:
    """A seller's storefront, newest listings first, sold ones included."""
    rows = await client.select(
        "products", {"seller_id": seller_id}, order_by="created_at", descending=True
    )
    return [models.Product.from_row(row) for row in rows]


async def get_product(client: DataClient, product_id: str) -> models.Product:
    """Fetch a product by id, raises NotFoundError if absent."""
    rows = await client.select("products", {"id": product_id}, limit=1)
    if not rows:
        raise NotFoundError("Product not found!")
    return models.Product.from_row(rows[0])


async def get_products(
    client: DataClient, product_ids: Sequence[str]
) -> Dict[str, models.Product]:
    """Products keyed by id, missing ids are left out."""
    if not product_ids:
        return {}
    rows = await client.select("products", {"id": list(product_ids)})
    return {row["id"]: models.Product.from_row(row) for row in rows}


# ---------------------------
# Reviews
# ---------------------------


async def list_reviews(client: DataClient, product_id: str) -> List[models.Review]:
    """Reviews of a product, newest first."""
    rows = await client.select(
        "reviews", {"product_id": product_id}, order_by="created_at", descending=True
    )
    return [models.Review.from_row(row) for row in rows]


async def has_purchased(client: DataClient, user_id: str, product_id: str) -> bool:
    """True if the user has at least one completed order containing the product."""
    orders = await client.select(
        "orders", {"user_id": user_id, "status": list(COMPLETED_ORDER_STATUSES)}
    )
    if not orders:
        return False
    lines = await client.select(
        "order_items",
        {"order_id": [o["id"] for o in orders], "product_id": product_id},
        limit=1,
    )
    return bool(lines)


async def has_reviewed(client: DataClient, user_id: str, product_id: str) -> bool:
    rows = await client.select(
        "reviews", {"user_id": user_id, "product_id": product_id}, limit=1
    )
    return bool(rows)


async def insert_review(
    client: DataClient, draft: models.ReviewDraft, image_url: Optional[str] = None
) -> models.Review:
    rows = await client.insert(
        "reviews",
        [
            {
                "product_id": draft.product_id,
                "user_id": draft.user_id,
                "rating": draft.rating,
                "comment": draft.comment.strip(),
                "image_url": image_url,
            }
        ],
    )
    return models.Review.from_row(rows[0])


async def product_ratings(client: DataClient, product_id: str) -> List[int]:
    rows = await client.select("reviews", {"product_id": product_id})
    return [int(r["rating"]) for r in rows]


async def seller_ratings(client: DataClient, seller_id: str) -> List[int]:
    """Ratings of every review left on any of the seller's products."""
    products = await client.select("products", {"seller_id": seller_id})
    if not products:
        return []
    rows = await client.select("reviews", {"product_id": [p["id"] for p in products]})
    return [int(r["rating"]) for r in rows]


# ---------------------------
# Checkout & Orders
# ---------------------------


async def place_order(
    client: DataClient,
    user_id: str,
    items: Sequence[models.CartItem],
    shipping_address: str,
    payment_method: str = "manual_transfer",
) -> models.Order:
    """
    Create an order from the cart snapshot and return it.
    Payment is simulated, orders are created as 'paid'. Every line has quantity 1.
    """
    shipping_address = (shipping_address or "").strip()
    if not items:
        raise ValidationError("Your cart is empty")
    if not shipping_address:
        raise ValidationError("Please provide a shipping address")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {payment_method}")

    order_id = uuid.uuid4().hex
    order_row = {
        "id": order_id,
        "user_id": user_id,
        "total_amount": sum(item.price for item in items),
        "shipping_address": shipping_address,
        "status": "paid",
        "payment_method": payment_method,
    }
    line_rows = [
        {
            "order_id": order_id,
            "product_id": item.id,
            "quantity": 1,
            "price": item.price,
        }
        for item in items
    ]
    # an order never exists without its lines
    orders, _ = await client.insert_batch(
        [("orders", [order_row]), ("order_items", line_rows)]
    )
    return models.Order.from_row(orders[0])


async def list_orders(
    client: DataClient, user_id: str
) -> List[Tuple[models.Order, List[models.OrderItem]]]:
    """
    A user's orders in reverse chronological order, each with its lines.
    """
    rows = await client.select(
        "orders", {"user_id": user_id}, order_by="created_at", descending=True
    )
    orders = [models.Order.from_row(row) for row in rows]
    if not orders:
        return []
    line_rows = await client.select(
        "order_items", {"order_id": [o.id for o in orders]}, order_by="created_at"
    )
    lines = [models.OrderItem.from_row(row) for row in line_rows]
    return [(o, [ln for ln in lines if ln.order_id == o.id]) for o in orders]
