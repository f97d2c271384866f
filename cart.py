"""Cart service: one cart per user, re-priced from the live catalog."""

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import CatalogService
from database import oid, utcnow
from errors import InsufficientStock, ItemNotInCart, NotFound
from schemas import Cart

logger = structlog.get_logger(__name__)


class CartService:
    def __init__(self, db: Database, catalog: CatalogService):
        self.carts = db["cart"]
        self.products = db["product"]
        self.catalog = catalog

    def get_or_create_cart(self, user_id) -> dict:
        user_oid = oid(user_id)
        now = utcnow()
        # user_id comes from the filter on insert.
        defaults = Cart(user_id=user_oid).model_dump(exclude={"user_id"})
        defaults.update(created_at=now, updated_at=now)
        return self.carts.find_one_and_update(
            {"user_id": user_oid},
            {"$setOnInsert": defaults},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def add_to_cart(self, user_id, product_id, quantity: int = 1) -> dict:
        product = self.catalog.get_active_product(product_id)
        cart = self.get_or_create_cart(user_id)
        items = cart["items"]

        existing = next((item for item in items if item["product_id"] == product["_id"]), None)
        wanted = quantity + (existing["quantity"] if existing else 0)
        if product["stock"] < wanted:
            raise InsufficientStock(f"Insufficient stock for {product['name']}")

        if existing:
            existing["quantity"] = wanted
        else:
            items.append({"product_id": product["_id"], "quantity": quantity})
        return self._save(cart, items)

    def remove_from_cart(self, user_id, product_id) -> dict:
        cart = self.get_or_create_cart(user_id)
        product_oid = oid(product_id)
        items = [item for item in cart["items"] if item["product_id"] != product_oid]
        return self._save(cart, items)

    def update_quantity(self, user_id, product_id, quantity: int) -> dict:
        cart = self.get_or_create_cart(user_id)
        product_oid = oid(product_id)
        item = next((item for item in cart["items"] if item["product_id"] == product_oid), None)
        if item is None:
            raise ItemNotInCart()

        if quantity <= 0:
            items = [i for i in cart["items"] if i["product_id"] != product_oid]
        else:
            product = self.catalog.get_active_product(product_oid)
            if product["stock"] < quantity:
                raise InsufficientStock(f"Insufficient stock for {product['name']}")
            item["quantity"] = quantity
            items = cart["items"]
        return self._save(cart, items)

    def clear_cart(self, user_id) -> dict:
        cart = self.get_or_create_cart(user_id)
        return self.carts.find_one_and_update(
            {"_id": cart["_id"]},
            {"$set": {"items": [], "total_items": 0, "total_price": 0, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def get_cart_summary(self, user_id) -> dict:
        cart = self.get_or_create_cart(user_id)
        return {
            "items": cart["items"],
            "total_items": cart["total_items"],
            "total_price": cart["total_price"],
        }

    def get_cart(self, user_id) -> dict:
        """The cart with each line joined to its current product details."""
        cart = self.get_or_create_cart(user_id)
        lines = []
        for item in cart["items"]:
            try:
                product = self.catalog.get_product_by_id(item["product_id"])
            except NotFound:
                continue
            lines.append({
                "product_id": item["product_id"],
                "name": product["name"],
                "slug": product["slug"],
                "price": product["price"],
                "image": product["images"][0] if product.get("images") else None,
                "stock": product["stock"],
                "is_active": product.get("is_active", True),
                "quantity": item["quantity"],
                "subtotal": product["price"] * item["quantity"],
            })
        return dict(cart, items=lines)

    def calculate_totals(self, items: list) -> dict:
        """Walk every line and price it from the catalog; vanished products count for nothing."""
        total_price = 0.0
        total_items = 0
        for item in items:
            product = self.products.find_one({"_id": item["product_id"]}, {"price": 1})
            if product:
                total_price += product["price"] * item["quantity"]
                total_items += item["quantity"]
        return {"total_items": total_items, "total_price": round(total_price, 2)}

    def _save(self, cart: dict, items: list) -> dict:
        totals = self.calculate_totals(items)
        return self.carts.find_one_and_update(
            {"_id": cart["_id"]},
            {"$set": dict(totals, items=items, updated_at=utcnow())},
            return_document=ReturnDocument.AFTER,
        )
