"""
Cart Service

One cart per user, created lazily on first access. Every write recomputes the
subtotal, slides the 7-day expiry forward and is guarded by a version number:
a cart changed by another request between our read and our write is reported
as a conflict rather than silently overwritten.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from database import to_object_id, utcnow
from errors import BadRequestError, ConflictError, NotFoundError
from pricing import cart_subtotal, variation_price
from schemas import Cart, CartItem

logger = logging.getLogger("vault.cart")

CART_TTL = timedelta(days=7)


def _same_line(item: Dict[str, Any], product_id: str, variant_sku: str) -> bool:
    return item["product_id"] == product_id and item["variant"]["sku"] == variant_sku


class CartService:
    def __init__(self, db: Database):
        self.carts = db["cart"]
        self.products = db["product"]

    def get_cart(self, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        fresh = Cart(user_id=user_id, expires_at=now + CART_TTL).model_dump()
        cart = self.carts.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {**fresh, "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        expires_at = cart.get("expires_at")
        if cart["items"] and expires_at and expires_at <= now:
            # TTL sweeps lag behind; an expired cart reads as empty.
            cart["items"] = []
            cart = self._save(cart)
        return cart

    def _save(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        version = cart.get("version", 0)
        changes = {
            "items": cart["items"],
            "subtotal": cart_subtotal(cart["items"]),
            "expires_at": now + CART_TTL,
            "updated_at": now,
            "version": version + 1,
        }
        saved = self.carts.find_one_and_update(
            {"_id": cart["_id"], "version": version},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if saved is None:
            logger.warning("Concurrent update on cart of user %s", cart["user_id"])
            raise ConflictError("Cart was modified by another request, please retry")
        return saved

    def _resolve_price(self, product_id: str, variant_sku: str, requested: int) -> Tuple[Dict[str, Any], float]:
        """Check the variant exists with enough stock and return it with its current unit price."""
        product = self.products.find_one({"_id": to_object_id(product_id, "product"), "is_active": {"$ne": False}})
        if not product:
            raise NotFoundError("Product not found")
        variant = next((v for v in product.get("variations") or [] if v["sku"] == variant_sku), None)
        if not variant:
            raise BadRequestError("Invalid product variant")
        if variant.get("stock_quantity", 0) < requested:
            raise BadRequestError(f"Insufficient stock. Only {variant.get('stock_quantity', 0)} units available.")
        return variant, variation_price(product["base_price"], variant)

    def add_item(self, user_id: str, product_id: str, quantity: int, variant: Dict[str, Any]) -> Dict[str, Any]:
        sku = variant["sku"]
        _, price = self._resolve_price(product_id, sku, quantity)
        cart = self.get_cart(user_id)
        existing = next((i for i in cart["items"] if _same_line(i, product_id, sku)), None)
        if existing:
            combined = existing["quantity"] + quantity
            self._resolve_price(product_id, sku, combined)
            existing["quantity"] = combined
            existing["price"] = price
        else:
            item = CartItem(product_id=product_id, quantity=quantity, price=price, variant=variant)
            cart["items"].append(item.model_dump())
        return self._save(cart)

    def update_item_quantity(self, user_id: str, product_id: str, variant_sku: str, quantity: int) -> Dict[str, Any]:
        price: Optional[float] = None
        if quantity > 0:
            _, price = self._resolve_price(product_id, variant_sku, quantity)
        cart = self.get_cart(user_id)
        index = next((n for n, i in enumerate(cart["items"]) if _same_line(i, product_id, variant_sku)), None)
        if index is None:
            raise NotFoundError("Item not found in cart")
        if quantity <= 0:
            cart["items"].pop(index)
        else:
            cart["items"][index]["quantity"] = quantity
            cart["items"][index]["price"] = price
        return self._save(cart)

    def remove_item(self, user_id: str, product_id: str, variant_sku: str) -> Dict[str, Any]:
        cart = self.get_cart(user_id)
        cart["items"] = [i for i in cart["items"] if not _same_line(i, product_id, variant_sku)]
        return self._save(cart)

    def clear_cart(self, user_id: str) -> Dict[str, Any]:
        cart = self.get_cart(user_id)
        cart["items"] = []
        return self._save(cart)

    def empty_after_checkout(self, user_id: str) -> None:
        """Empty the cart unconditionally, ignoring the version."""
        now = utcnow()
        self.carts.update_one(
            {"user_id": user_id},
            {"$set": {"items": [], "subtotal": 0, "expires_at": now + CART_TTL, "updated_at": now},
             "$inc": {"version": 1}},
        )

    def refresh_prices(self, user_id: str) -> Dict[str, Any]:
        """Re-derive every line price from the live catalog and report what changed."""
        cart = self.get_cart(user_id)
        price_changes: List[Dict[str, Any]] = []
        for item in cart["items"]:
            product = self.products.find_one({"_id": to_object_id(item["product_id"], "product")})
            if not product:
                continue
            variant = next((v for v in product.get("variations") or [] if v["sku"] == item["variant"]["sku"]), None)
            current = variation_price(product["base_price"], variant) if variant else product["base_price"]
            if current != item["price"]:
                price_changes.append({
                    "product_id": item["product_id"],
                    "variant_sku": item["variant"]["sku"],
                    "old_price": item["price"],
                    "new_price": current,
                })
                item["price"] = current
        if price_changes:
            cart = self._save(cart)
            logger.info("Refreshed %d cart prices for user %s", len(price_changes), user_id)
        return {"cart": cart, "price_changes": price_changes}
