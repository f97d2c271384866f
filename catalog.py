"""Catalog service: products, reviews and the stock counter."""

import re
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, oid, paginate, pagination_info, utcnow
from errors import DuplicateSKU, InsufficientStock, ProductNotFound, ValidationFailed
from schemas import Product

logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = ("created_at", "price", "name", "stock", "ratings.average")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "product"


def _require_positive(quantity: int) -> None:
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")


class CatalogService:
    def __init__(self, db: Database):
        self.db = db
        self.products = db["product"]

    def _unique_slug(self, name: str, exclude_id: Optional[ObjectId] = None) -> str:
        base = slugify(name)
        slug = base
        suffix = 2
        while True:
            query: Dict[str, Any] = {"slug": slug}
            if exclude_id is not None:
                query["_id"] = {"$ne": exclude_id}
            if self.products.find_one(query, {"_id": 1}) is None:
                return slug
            slug = f"{base}-{suffix}"
            suffix += 1

    def create_product(self, data: dict) -> dict:
        if self.products.find_one({"sku": data["sku"]}):
            raise DuplicateSKU()
        product = Product(slug=self._unique_slug(data["name"]), **data)
        try:
            product_id = create_document(self.db, "product", product)
        except DuplicateKeyError:
            # Lost a race with a concurrent insert of the same SKU.
            raise DuplicateSKU()
        logger.info("Product created", product_id=str(product_id), sku=product.sku)
        return self.products.find_one({"_id": product_id})

    def get_all_products(
        self,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
    ) -> dict:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationFailed(f"Cannot sort by {sort_by}")

        query: Dict[str, Any] = {"is_active": True}
        if category:
            query["category"] = category
        if min_price is not None or max_price is not None:
            query["price"] = {}
            if min_price is not None:
                query["price"]["$gte"] = min_price
            if max_price is not None:
                query["price"]["$lte"] = max_price
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]

        # Price is the only ascending sort.
        direction = ASCENDING if sort_by == "price" else DESCENDING
        pages = paginate(page, limit)
        cursor = (
            self.products.find(query, {"reviews": 0})
            .sort(sort_by, direction)
            .skip(pages["skip"])
            .limit(pages["limit"])
        )
        products = list(cursor)
        total = self.products.count_documents(query)
        return {
            "products": products,
            "pagination": pagination_info(pages["page"], pages["limit"], total),
        }

    def get_product_by_id(self, product_id) -> dict:
        product = self.products.find_one({"_id": oid(product_id)})
        if not product:
            raise ProductNotFound()
        return product

    def get_active_product(self, product_id) -> dict:
        """Like get_product_by_id, but soft-deleted products are not purchasable."""
        product = self.get_product_by_id(product_id)
        if not product.get("is_active", True):
            raise ProductNotFound()
        return product

    def get_product_by_slug(self, slug: str) -> dict:
        product = self.products.find_one({"slug": slug})
        if not product:
            raise ProductNotFound()
        return product

    def update_product(self, product_id, update_data: dict) -> dict:
        product_oid = oid(product_id)
        changes = {k: v for k, v in update_data.items() if v is not None}
        if "sku" in changes and self.products.find_one({"sku": changes["sku"], "_id": {"$ne": product_oid}}):
            raise DuplicateSKU()
        if "name" in changes:
            changes["slug"] = self._unique_slug(changes["name"], exclude_id=product_oid)
        changes["updated_at"] = utcnow()
        product = self.products.find_one_and_update(
            {"_id": product_oid},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not product:
            raise ProductNotFound()
        return product

    def delete_product(self, product_id) -> dict:
        product = self.products.find_one_and_update(
            {"_id": oid(product_id)},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not product:
            raise ProductNotFound()
        logger.info("Product deactivated", product_id=str(product["_id"]))
        return product

    def add_review(self, product_id, user_id, rating: int, comment: Optional[str] = None) -> dict:
        product_oid = oid(product_id)
        review = {
            "_id": ObjectId(),
            "user_id": oid(user_id),
            "rating": rating,
            "comment": comment,
            "created_at": utcnow(),
        }
        # Review and ratings land in one write, conditional on the review count
        # that was read. A concurrent review makes it miss and re-read.
        while True:
            product = self.products.find_one({"_id": product_oid}, {"reviews": 1})
            if not product:
                raise ProductNotFound()
            ratings_seen = [r["rating"] for r in product.get("reviews", [])]
            ratings_after = ratings_seen + [rating]
            ratings = {
                "average": sum(ratings_after) / len(ratings_after),
                "count": len(ratings_after),
            }
            updated = self.products.find_one_and_update(
                {"_id": product_oid, "reviews": {"$size": len(ratings_seen)}},
                {
                    "$push": {"reviews": review},
                    "$set": {"ratings": ratings, "updated_at": utcnow()},
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
            logger.debug("Review raced another write, retrying", product_id=str(product_oid))

    def update_stock(self, product_id, quantity: int) -> dict:
        """Take `quantity` units out of stock in a single conditional update.

        The filter only matches while enough stock remains, so concurrent
        callers can never drive the counter below zero.
        """
        _require_positive(quantity)
        product_oid = oid(product_id)
        product = self.products.find_one_and_update(
            {"_id": product_oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            current = self.products.find_one({"_id": product_oid}, {"name": 1})
            if current is None:
                raise ProductNotFound()
            raise InsufficientStock(f"Insufficient stock for {current['name']}")
        logger.debug("Stock reserved", product_id=str(product_oid), quantity=quantity, stock=product["stock"])
        return product

    def restock(self, product_id, quantity: int) -> dict:
        _require_positive(quantity)
        product = self.products.find_one_and_update(
            {"_id": oid(product_id)},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            raise ProductNotFound()
        logger.debug("Stock released", product_id=str(product["_id"]), quantity=quantity, stock=product["stock"])
        return product

    def get_low_stock_products(self, threshold: int = 10) -> list:
        return list(
            self.products.find(
                {"stock": {"$lte": threshold}, "is_active": True},
                {"name": 1, "sku": 1, "stock": 1, "category": 1},
            ).sort("stock", ASCENDING)
        )
