"""
Product Service

Catalog management: creation with duplicate name/SKU rejection, filtered and
searchable listings with pagination, soft deletion, reviews with rating
recalculation, and atomic stock adjustments.
"""
import logging
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import DEFAULT_LIMIT, DEFAULT_PAGE
from database import create_document, to_object_id, utcnow
from dto import ProductCreateDTO, ProductUpdateDTO
from errors import BadRequestError, NotFoundError
from pricing import average_rating
from schemas import Product

logger = logging.getLogger("vault.products")


def validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0]
    return str(err.get("msg", "Validation failed")).replace("Value error, ", "")


def product_filters(category: Optional[str] = None, brand: Optional[str] = None,
                    min_price: Optional[float] = None, max_price: Optional[float] = None,
                    is_active: Optional[bool] = True) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if is_active is not None:
        query["is_active"] = is_active
    if category:
        query["category"] = category
    if brand:
        query["brand"] = brand
    if min_price is not None or max_price is not None:
        query["base_price"] = {}
        if min_price is not None:
            query["base_price"]["$gte"] = float(min_price)
        if max_price is not None:
            query["base_price"]["$lte"] = float(max_price)
    return query


def paginate(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"total": total, "page": page, "limit": limit,
            "totalPages": math.ceil(total / limit) if limit else 0}


class ProductService:
    def __init__(self, db: Database):
        self.db = db
        self.products = db["product"]

    def _load(self, product_id: str) -> Dict[str, Any]:
        product = self.products.find_one({"_id": to_object_id(product_id, "product")})
        if not product:
            raise NotFoundError("Product not found")
        return product

    def _find_page(self, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        total = self.products.count_documents(query)
        cursor = self.products.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return {"products": list(cursor), **paginate(page, limit, total)}

    def create_product(self, data: ProductCreateDTO) -> Dict[str, Any]:
        if self.products.find_one({"name": data.name}):
            raise BadRequestError("Product with this name already exists")
        if self.products.find_one({"sku": data.sku}):
            raise BadRequestError("SKU already exists")
        try:
            product = Product(**data.model_dump(exclude_none=True))
        except ValidationError as exc:
            raise BadRequestError(validation_message(exc))
        try:
            product_id = create_document(self.db, "product", product)
        except DuplicateKeyError:
            raise BadRequestError("Product with this name or SKU already exists")
        logger.info("Created product %s (%s)", product.name, product.sku)
        return self._load(product_id)

    def get_products(self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT, **filters: Any) -> Dict[str, Any]:
        return self._find_page(product_filters(**filters), page, limit)

    def get_product_by_id(self, product_id: str, include_inactive: bool = False) -> Dict[str, Any]:
        product = self._load(product_id)
        if not product.get("is_active", True) and not include_inactive:
            raise NotFoundError("Product not found")
        return product

    def search_products(self, term: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT,
                        **filters: Any) -> Dict[str, Any]:
        term = term.strip()
        if not term:
            raise BadRequestError("Search term is required")
        query = product_filters(**filters)
        pattern = {"$regex": re.escape(term), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
        return self._find_page(query, page, limit)

    def update_product(self, product_id: str, updates: ProductUpdateDTO) -> Dict[str, Any]:
        current = self._load(product_id)
        changes = updates.model_dump(exclude_unset=True)
        for field in ("name", "sku"):
            if field in changes and changes[field] != current.get(field):
                if self.products.find_one({field: changes[field], "_id": {"$ne": current["_id"]}}):
                    raise BadRequestError("Product with this name already exists" if field == "name"
                                          else "SKU already exists")
        merged = {k: v for k, v in current.items() if k in Product.model_fields}
        merged.update(changes)
        try:
            product = Product(**merged)
        except ValidationError as exc:
            raise BadRequestError(validation_message(exc))
        stored = product.model_dump(include=set(changes))
        stored["updated_at"] = utcnow()
        self.products.update_one({"_id": current["_id"]}, {"$set": stored})
        return self._load(product_id)

    def delete_product(self, product_id: str) -> bool:
        result = self.products.update_one(
            {"_id": to_object_id(product_id, "product")},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("Product not found")
        logger.info("Deactivated product %s", product_id)
        return True

    def add_review(self, product_id: str, user_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
        """Add a review, or replace the user's previous one, then recompute the rating summary."""
        product = self._load(product_id)
        now = utcnow()
        reviews: List[Dict[str, Any]] = list(product.get("reviews") or [])
        for review in reviews:
            if review["user_id"] == user_id:
                review.update(rating=rating, comment=comment, updated_at=now)
                break
        else:
            reviews.append({"user_id": user_id, "rating": rating, "comment": comment,
                            "created_at": now, "updated_at": None})
        self.products.update_one(
            {"_id": product["_id"]},
            {"$set": {"reviews": reviews, "ratings": average_rating(reviews), "updated_at": now}},
        )
        return self._load(product_id)

    def update_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Apply a stock delta in one conditional write; the result can never drop below zero."""
        oid = to_object_id(product_id, "product")
        query: Dict[str, Any] = {"_id": oid}
        if quantity < 0:
            query["stock"] = {"$gte": -quantity}
        product = self.products.find_one_and_update(
            query,
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            self._load(product_id)
            raise BadRequestError("Insufficient stock")
        return product
