"""Tests for order placement and the order lifecycle."""

from datetime import timedelta

import pytest

from conftest import SHIPPING_ADDRESS
from errors import (
    AddressNotFound,
    CannotCancel,
    EmptyOrder,
    InsufficientStock,
    InvalidState,
    InvalidStatus,
    InvalidTransition,
    OrderNotFound,
    ProductNotFound,
)
from orders import ALLOWED_TRANSITIONS, generate_order_number


def place(services, user, items, **fields):
    fields.setdefault("payment_method", "credit_card")
    fields.setdefault("shipping_address", SHIPPING_ADDRESS)
    return services.orders.create_order(user["_id"], items, **fields)


def stock_of(services, product):
    return services.catalog.get_product_by_id(product["_id"])["stock"]


class TestCreateOrder:
    def test_totals(self, services, make_product, customer):
        a = make_product(price=10, stock=5)
        b = make_product(price=5, stock=5)

        order = place(
            services,
            customer,
            [{"product_id": a["_id"], "quantity": 2}, {"product_id": b["_id"], "quantity": 1}],
            shipping_cost=5,
            tax=2,
            discount_amount=1,
        )

        assert order["subtotal"] == 25
        assert order["total"] == 31
        assert order["total"] == order["subtotal"] + order["shipping_cost"] + order["tax"] - order["discount_amount"]

    def test_defaults_and_snapshot(self, services, make_product, customer):
        product = make_product(name="Head Torch", price=12, stock=5)

        order = place(services, customer, [{"product_id": str(product["_id"]), "quantity": 2, "discount": 1}])

        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["order_number"].startswith("ORD-")
        assert order["user_id"] == customer["_id"]
        assert order["shipping_cost"] == 0
        assert order["tax"] == 0
        assert order["discount_amount"] == 0
        assert order["total"] == 24
        assert order["items"] == [
            {
                "product_id": product["_id"],
                "product_name": "Head Torch",
                "price": 12,
                "quantity": 2,
                "discount": 1,
            }
        ]
        assert order["shipping_address"]["city"] == "Springfield"

    def test_stock_is_decremented(self, services, make_product, customer):
        product = make_product(stock=5)

        place(services, customer, [{"product_id": product["_id"], "quantity": 3}])

        assert stock_of(services, product) == 2

    def test_empty_order(self, services, customer):
        with pytest.raises(EmptyOrder):
            place(services, customer, [])

    def test_missing_product(self, services, customer):
        with pytest.raises(ProductNotFound):
            place(services, customer, [{"product_id": "5f1d7f0e9b1e8a3c2d4b6a00", "quantity": 1}])

    def test_insufficient_stock(self, services, make_product, customer, db):
        product = make_product(stock=1)

        with pytest.raises(InsufficientStock):
            place(services, customer, [{"product_id": product["_id"], "quantity": 2}])

        assert db["order"].count_documents({}) == 0

    def test_failed_later_item_releases_earlier_reservations(self, services, make_product, customer, db):
        a = make_product(stock=5)
        b = make_product(stock=5)
        short = make_product(stock=1)

        with pytest.raises(InsufficientStock):
            place(
                services,
                customer,
                [
                    {"product_id": a["_id"], "quantity": 2},
                    {"product_id": b["_id"], "quantity": 3},
                    {"product_id": short["_id"], "quantity": 2},
                ],
            )

        assert stock_of(services, a) == 5
        assert stock_of(services, b) == 5
        assert stock_of(services, short) == 1
        assert db["order"].count_documents({}) == 0

    def test_failed_persist_releases_reservations(self, services, make_product, customer, monkeypatch):
        product = make_product(stock=5)

        def broken_insert(*args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr("orders.create_document", broken_insert)

        with pytest.raises(RuntimeError):
            place(services, customer, [{"product_id": product["_id"], "quantity": 4}])

        assert stock_of(services, product) == 5

    def test_last_unit_goes_to_one_buyer(self, services, make_product, customer, admin):
        product = make_product(stock=1)

        place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        with pytest.raises(InsufficientStock):
            place(services, admin, [{"product_id": product["_id"], "quantity": 1}])

        assert stock_of(services, product) == 0

    def test_snapshot_survives_price_change(self, services, make_product, customer):
        product = make_product(name="Compass", price=10, stock=5)
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        services.catalog.update_product(product["_id"], {"price": 99, "name": "Deluxe Compass"})

        stored = services.orders.get_order_by_id(order["_id"])
        assert stored["items"][0]["price"] == 10
        assert stored["items"][0]["product_name"] == "Compass"
        assert stored["total"] == 10

    def test_inactive_product_cannot_be_ordered(self, services, make_product, customer):
        product = make_product()
        services.catalog.delete_product(product["_id"])

        with pytest.raises(ProductNotFound):
            place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

    def test_ship_to_saved_address(self, services, make_product, customer):
        user = services.accounts.add_address(customer["_id"], dict(SHIPPING_ADDRESS, city="Shelbyville"))
        address_id = user["addresses"][0]["_id"]
        product = make_product()

        order = place(
            services,
            customer,
            [{"product_id": product["_id"], "quantity": 1}],
            shipping_address=None,
            address_id=str(address_id),
        )

        assert order["shipping_address"]["city"] == "Shelbyville"
        assert "is_default" not in order["shipping_address"]

    def test_unknown_saved_address(self, services, make_product, customer):
        product = make_product()

        with pytest.raises(AddressNotFound):
            place(
                services,
                customer,
                [{"product_id": product["_id"], "quantity": 1}],
                address_id="5f1d7f0e9b1e8a3c2d4b6a00",
            )

    def test_confirmation_is_sent(self, services, make_product, customer, notifier):
        product = make_product()

        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        assert notifier.sent[0]["to"] == "alice@mailbox.org"
        assert order["order_number"] in notifier.sent[0]["subject"]

    def test_notification_failure_keeps_order(self, services, make_product, customer, notifier, db, monkeypatch):
        product = make_product(stock=2)

        def broken_send(user, order):
            raise ConnectionError("smtp down")

        monkeypatch.setattr(notifier, "send_order_confirmation", broken_send)

        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        assert db["order"].count_documents({"_id": order["_id"]}) == 1
        assert stock_of(services, product) == 1

    def test_order_number_format(self):
        number = generate_order_number()
        prefix, timestamp, suffix = number.split("-")
        assert prefix == "ORD"
        assert len(timestamp) == 6 and timestamp.isdigit()
        assert len(suffix) == 3 and suffix.isdigit()


class TestCheckout:
    def test_checkout_converts_cart_and_clears_it(self, services, make_product, customer):
        a = make_product(price=3, stock=5)
        b = make_product(price=4, stock=5)
        services.carts.add_to_cart(customer["_id"], a["_id"], 2)
        services.carts.add_to_cart(customer["_id"], b["_id"], 1)

        order = services.orders.checkout(
            customer["_id"], payment_method="wallet", shipping_address=SHIPPING_ADDRESS
        )

        assert order["subtotal"] == 10
        assert len(order["items"]) == 2
        assert services.carts.get_cart_summary(customer["_id"])["total_items"] == 0
        assert stock_of(services, a) == 3

    def test_checkout_empty_cart(self, services, customer):
        with pytest.raises(EmptyOrder):
            services.orders.checkout(customer["_id"], payment_method="wallet", shipping_address=SHIPPING_ADDRESS)

    def test_failed_checkout_keeps_cart(self, services, make_product, customer):
        product = make_product(stock=2)
        services.carts.add_to_cart(customer["_id"], product["_id"], 2)
        services.catalog.update_stock(product["_id"], 1)

        with pytest.raises(InsufficientStock):
            services.orders.checkout(customer["_id"], payment_method="wallet", shipping_address=SHIPPING_ADDRESS)

        assert services.carts.get_cart_summary(customer["_id"])["total_items"] == 2


class TestOrderStatus:
    def test_linear_progression(self, services, make_product, customer, notifier):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        confirmed = services.orders.update_order_status(order["_id"], "confirmed")
        shipped = services.orders.update_order_status(order["_id"], "shipped", tracking_number="1Z999")
        delivered = services.orders.update_order_status(order["_id"], "delivered")

        assert confirmed["status"] == "confirmed"
        assert shipped["tracking_number"] == "1Z999"
        assert shipped["estimated_delivery"] - shipped["shipped_date"] == timedelta(days=7)
        assert delivered["status"] == "delivered"
        assert delivered["delivered_date"] is not None
        assert "Shipped" in notifier.sent[-1]["subject"]

    def test_skipping_steps_is_rejected(self, services, make_product, customer):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        with pytest.raises(InvalidTransition):
            services.orders.update_order_status(order["_id"], "delivered")

    def test_unknown_status(self, services, make_product, customer):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        with pytest.raises(InvalidStatus) as exc:
            services.orders.update_order_status(order["_id"], "lost")
        assert isinstance(exc.value, InvalidState)

    def test_cancel_through_status_update_restocks(self, services, make_product, customer):
        product = make_product(stock=4)
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 3}])

        cancelled = services.orders.update_order_status(order["_id"], "cancelled")

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancelled_date"] is not None
        assert stock_of(services, product) == 4

    def test_missing_order(self, services):
        with pytest.raises(OrderNotFound):
            services.orders.update_order_status("5f1d7f0e9b1e8a3c2d4b6a00", "confirmed")

    def test_transition_table_is_closed(self):
        assert ALLOWED_TRANSITIONS["delivered"] == ()
        assert ALLOWED_TRANSITIONS["cancelled"] == ()


class TestCancelOrder:
    def test_cancel_pending_order(self, services, make_product, customer):
        product = make_product(stock=5)
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 2}])

        cancelled = services.orders.cancel_order(order["_id"], "Changed my mind")

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancellation_reason"] == "Changed my mind"
        assert stock_of(services, product) == 5

    def test_cancel_delivered_order_fails(self, services, make_product, customer):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        for status in ("confirmed", "shipped", "delivered"):
            services.orders.update_order_status(order["_id"], status)

        with pytest.raises(CannotCancel) as exc:
            services.orders.cancel_order(order["_id"])

        assert isinstance(exc.value, InvalidState)
        assert services.orders.get_order_by_id(order["_id"])["status"] == "delivered"

    def test_cancel_twice_restocks_once(self, services, make_product, customer):
        product = make_product(stock=5)
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 2}])
        services.orders.cancel_order(order["_id"])

        with pytest.raises(CannotCancel):
            services.orders.cancel_order(order["_id"])

        assert stock_of(services, product) == 5

    def test_cancel_missing_order(self, services):
        with pytest.raises(OrderNotFound):
            services.orders.cancel_order("5f1d7f0e9b1e8a3c2d4b6a00")


class TestPaymentStatus:
    def test_payment_status_is_independent(self, services, make_product, customer):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        updated = services.orders.update_payment_status(order["_id"], "refunded")

        assert updated["payment_status"] == "refunded"
        assert updated["status"] == "pending"

    def test_unknown_payment_status(self, services, make_product, customer):
        product = make_product()
        order = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])

        with pytest.raises(InvalidStatus):
            services.orders.update_payment_status(order["_id"], "paid")


class TestOrderQueries:
    def test_user_orders_are_scoped_and_paginated(self, services, make_product, customer, admin):
        product = make_product(stock=20)
        for _ in range(3):
            place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        place(services, admin, [{"product_id": product["_id"], "quantity": 1}])

        result = services.orders.get_user_orders(customer["_id"], page=1, limit=2)

        assert len(result["orders"]) == 2
        assert result["pagination"]["total"] == 3
        assert all(o["user_id"] == customer["_id"] for o in result["orders"])

    def test_all_orders_filter_by_status(self, services, make_product, customer):
        product = make_product(stock=20)
        first = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        services.orders.update_order_status(first["_id"], "confirmed")

        result = services.orders.get_all_orders(status="confirmed")

        assert [o["_id"] for o in result["orders"]] == [first["_id"]]

    def test_statistics(self, services, make_product, customer):
        product = make_product(price=10, stock=20)
        first = place(services, customer, [{"product_id": product["_id"], "quantity": 1}])
        place(services, customer, [{"product_id": product["_id"], "quantity": 3}])
        services.orders.cancel_order(first["_id"])

        stats = services.orders.get_order_statistics()

        assert stats["total_orders"] == 2
        assert stats["total_revenue"] == 40
        assert stats["average_order_value"] == 20
        assert stats["orders_by_status"] == {"cancelled": 1, "pending": 1}
        assert stats["orders_by_payment_status"] == {"pending": 2}
