"""Customer notifications. Messages are rendered and logged; there is no mail transport."""

import structlog

logger = structlog.get_logger(__name__)


class Notifier:
    def send_email(self, to: str, subject: str, body: str) -> dict:
        logger.info("Email sent", to=to, subject=subject, length=len(body))
        return {"success": True, "message": "Email sent successfully"}

    def send_order_confirmation(self, user: dict, order: dict) -> dict:
        subject = f"Order Confirmation - {order['order_number']}"
        body = (
            f"Dear {user['name']},\n"
            "Your order has been received!\n"
            f"Order Number: {order['order_number']}\n"
            f"Total Amount: ${order['total']:.2f}\n"
        )
        return self.send_email(user["email"], subject, body)

    def send_order_shipped(self, user: dict, order: dict) -> dict:
        subject = f"Your Order Has Been Shipped - {order['order_number']}"
        body = (
            f"Dear {user['name']},\n"
            "Your order has been shipped!\n"
            f"Order Number: {order['order_number']}\n"
            f"Tracking Number: {order.get('tracking_number') or 'n/a'}\n"
        )
        return self.send_email(user["email"], subject, body)
