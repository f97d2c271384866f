"""
Order placement and the order lifecycle.

Placing an order reserves stock line by line through the catalog's conditional
decrement. If any line fails, or the order cannot be written, every reservation
already taken is handed back before the error propagates, so a rejected order
never consumes inventory.

Order status moves pending -> confirmed -> shipped -> delivered; cancellation
is allowed until delivery and returns the items to stock. Payment status is a
separate field validated only against its own value set.
"""

import random
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from accounts import AccountService
from cart import CartService
from catalog import CatalogService
from database import create_document, oid, paginate, pagination_info, utcnow
from errors import (
    CannotCancel,
    EmptyOrder,
    InsufficientStock,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    OrderNotFound,
    ValidationFailed,
)
from notifications import Notifier
from schemas import ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES, Order, OrderItem, ShippingAddress

logger = structlog.get_logger(__name__)

ESTIMATED_DELIVERY_DAYS = 7

ALLOWED_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("shipped", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"ORD-{timestamp}-{random.randint(0, 999):03d}"


class OrderService:
    def __init__(
        self,
        db: Database,
        catalog: CatalogService,
        accounts: AccountService,
        carts: CartService,
        notifier: Notifier,
    ):
        self.db = db
        self.orders = db["order"]
        self.catalog = catalog
        self.accounts = accounts
        self.carts = carts
        self.notifier = notifier

    def create_order(
        self,
        user_id,
        items: List[dict],
        payment_method: str,
        shipping_address: Optional[dict] = None,
        address_id: Optional[str] = None,
        shipping_cost: float = 0,
        tax: float = 0,
        discount_amount: float = 0,
        notes: Optional[str] = None,
    ) -> dict:
        if not items:
            raise EmptyOrder()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationFailed(f"Invalid payment method: {payment_method}")

        user = self.accounts.get_user_by_id(user_id)
        if address_id is not None:
            shipping_address = self.accounts.get_address(user["_id"], address_id)
        address = ShippingAddress(**(shipping_address or {}))

        shipping_cost = shipping_cost or 0
        tax = tax or 0
        discount_amount = discount_amount or 0

        subtotal = 0.0
        snapshot: List[OrderItem] = []
        reserved: List[tuple] = []
        try:
            for item in items:
                quantity = item["quantity"]
                if quantity < 1:
                    raise ValidationFailed("Quantity must be at least 1")
                product = self.catalog.get_active_product(item["product_id"])
                if product["stock"] < quantity:
                    raise InsufficientStock(f"Insufficient stock for {product['name']}")

                subtotal += product["price"] * quantity
                snapshot.append(
                    OrderItem(
                        product_id=product["_id"],
                        product_name=product["name"],
                        price=product["price"],
                        quantity=quantity,
                        discount=item.get("discount") or 0,
                    )
                )
                self.catalog.update_stock(product["_id"], quantity)
                reserved.append((product["_id"], quantity))

            subtotal = round(subtotal, 2)
            order = Order(
                order_number=generate_order_number(),
                user_id=user["_id"],
                items=snapshot,
                shipping_address=address,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                tax=tax,
                discount_amount=discount_amount,
                total=round(subtotal + shipping_cost + tax - discount_amount, 2),
                payment_method=payment_method,
                notes=notes,
            )
            order_id = create_document(self.db, "order", order)
        except Exception:
            self._release(reserved)
            raise

        created = self.orders.find_one({"_id": order_id})
        logger.info(
            "Order placed",
            order_id=str(order_id),
            order_number=created["order_number"],
            user_id=str(user["_id"]),
            total=created["total"],
        )
        self._notify(self.notifier.send_order_confirmation, user, created)
        return created

    def checkout(self, user_id, **order_fields) -> dict:
        """Turn the user's cart into an order, then empty the cart."""
        cart = self.carts.get_or_create_cart(user_id)
        items = [{"product_id": i["product_id"], "quantity": i["quantity"]} for i in cart["items"]]
        if not items:
            raise EmptyOrder("Cart is empty")
        order = self.create_order(user_id, items, **order_fields)
        self.carts.clear_cart(user_id)
        return order

    def get_order_by_id(self, order_id) -> dict:
        order = self.orders.find_one({"_id": oid(order_id)})
        if not order:
            raise OrderNotFound()
        return order

    def get_user_orders(self, user_id, page: int = 1, limit: int = 10) -> dict:
        return self._find_page({"user_id": oid(user_id)}, page, limit)

    def get_all_orders(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if payment_status:
            query["payment_status"] = payment_status
        query.update(_date_range(start_date, end_date))
        return self._find_page(query, page, limit)

    def update_order_status(self, order_id, status: str, tracking_number: Optional[str] = None) -> dict:
        if status not in ORDER_STATUSES:
            raise InvalidStatus(f"Invalid order status: {status}")
        if status == "cancelled":
            return self.cancel_order(order_id)

        order = self.get_order_by_id(order_id)
        current = order["status"]
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot change order status from {current} to {status}")

        now = utcnow()
        changes: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == "shipped":
            changes["shipped_date"] = now
            changes["estimated_delivery"] = now + timedelta(days=ESTIMATED_DELIVERY_DAYS)
            if tracking_number:
                changes["tracking_number"] = tracking_number
        elif status == "delivered":
            changes["delivered_date"] = now

        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": current},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise InvalidTransition("Order status changed concurrently, retry")

        logger.info("Order status updated", order_id=str(order["_id"]), old_status=current, new_status=status)
        if status == "shipped":
            self._notify_owner(self.notifier.send_order_shipped, updated)
        return updated

    def update_payment_status(self, order_id, payment_status: str) -> dict:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidStatus(f"Invalid payment status: {payment_status}")
        order = self.orders.find_one_and_update(
            {"_id": oid(order_id)},
            {"$set": {"payment_status": payment_status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not order:
            raise OrderNotFound()
        logger.info("Payment status updated", order_id=str(order["_id"]), payment_status=payment_status)
        return order

    def cancel_order(self, order_id, reason: Optional[str] = None) -> dict:
        order_oid = oid(order_id)
        now = utcnow()
        # Only the caller whose update matches a cancellable status restocks.
        order = self.orders.find_one_and_update(
            {"_id": order_oid, "status": {"$nin": ["delivered", "cancelled"]}},
            {
                "$set": {
                    "status": "cancelled",
                    "cancellation_reason": reason,
                    "cancelled_date": now,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            self.get_order_by_id(order_oid)
            raise CannotCancel()

        self._release([(item["product_id"], item["quantity"]) for item in order["items"]])
        logger.info("Order cancelled", order_id=str(order_oid), reason=reason)
        return order

    def get_order_statistics(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> dict:
        orders = list(self.orders.find(_date_range(start_date, end_date), {"total": 1, "status": 1, "payment_status": 1}))
        revenue = sum(order["total"] for order in orders)
        stats = {
            "total_orders": len(orders),
            "total_revenue": round(revenue, 2),
            "average_order_value": round(revenue / len(orders), 2) if orders else 0,
            "orders_by_status": {},
            "orders_by_payment_status": {},
        }
        for order in orders:
            by_status = stats["orders_by_status"]
            by_status[order["status"]] = by_status.get(order["status"], 0) + 1
            by_payment = stats["orders_by_payment_status"]
            by_payment[order["payment_status"]] = by_payment.get(order["payment_status"], 0) + 1
        return stats

    def _find_page(self, query: dict, page: int, limit: int) -> dict:
        pages = paginate(page, limit)
        orders = list(
            self.orders.find(query)
            .sort("created_at", DESCENDING)
            .skip(pages["skip"])
            .limit(pages["limit"])
        )
        total = self.orders.count_documents(query)
        return {
            "orders": orders,
            "pagination": pagination_info(pages["page"], pages["limit"], total),
        }

    def _release(self, reserved: List[tuple]) -> None:
        for product_id, quantity in reversed(reserved):
            try:
                self.catalog.restock(product_id, quantity)
            except NotFound:
                logger.warning("Cannot restock missing product", product_id=str(product_id), quantity=quantity)

    def _notify_owner(self, send, order: dict) -> None:
        try:
            user = self.accounts.get_user_by_id(order["user_id"])
        except NotFound:
            logger.warning("Order owner not found, skipping notification", order_id=str(order["_id"]))
            return
        self._notify(send, user, order)

    def _notify(self, send, user: dict, order: dict) -> None:
        # Notifications never undo the order they describe.
        try:
            send(user, order)
        except Exception:
            logger.exception("Notification failed", order_id=str(order["_id"]))


def _date_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> dict:
    if not start_date and not end_date:
        return {}
    created: Dict[str, Any] = {}
    if start_date:
        created["$gte"] = start_date
    if end_date:
        created["$lte"] = end_date
    return {"created_at": created}
