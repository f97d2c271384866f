"""Read-only dashboard aggregations over orders, products and users."""

from datetime import datetime, timezone

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import utcnow
from errors import ValidationFailed

# Bucket labels per period; weekly uses ISO week-year and week number.
PERIOD_FORMATS = {
    "daily": "%Y-%m-%d",
    "weekly": "%G-W%V",
    "monthly": "%Y-%m",
}


class AnalyticsService:
    def __init__(self, db: Database):
        self.orders = db["order"]
        self.products = db["product"]
        self.users = db["user"]

    def dashboard_stats(self) -> dict:
        revenue = list(
            self.orders.aggregate([
                {"$match": {"status": "delivered"}},
                {"$group": {"_id": None, "total_revenue": {"$sum": "$total"}}},
            ])
        )
        recent_orders = list(self.orders.find().sort("created_at", DESCENDING).limit(10))
        return {
            "total_customers": self.users.count_documents({"role": "customer"}),
            "total_products": self.products.count_documents({"is_active": True}),
            "total_orders": self.orders.count_documents({}),
            "completed_orders": self.orders.count_documents({"status": "delivered"}),
            "total_revenue": revenue[0]["total_revenue"] if revenue else 0,
            "recent_orders": recent_orders,
            "top_products": self.top_products(),
        }

    def top_products(self, limit: int = 5) -> list:
        rows = list(
            self.orders.aggregate([
                {"$match": {"status": {"$ne": "cancelled"}}},
                {"$unwind": "$items"},
                {
                    "$group": {
                        "_id": "$items.product_id",
                        "name": {"$first": "$items.product_name"},
                        "total_sold": {"$sum": "$items.quantity"},
                    }
                },
                {"$sort": {"total_sold": -1}},
                {"$limit": limit},
            ])
        )
        return [
            {"product_id": row["_id"], "name": row["name"], "total_sold": row["total_sold"]}
            for row in rows
        ]

    def sales_analytics(self, period: str = "monthly") -> dict:
        if period not in PERIOD_FORMATS:
            raise ValidationFailed(f"Unknown period: {period}")

        buckets = self.orders.aggregate([
            {
                "$group": {
                    "_id": {"$dateToString": {"format": PERIOD_FORMATS[period], "date": "$created_at"}},
                    "total_sales": {"$sum": "$total"},
                    "order_count": {"$sum": 1},
                    "average_order_value": {"$avg": "$total"},
                }
            },
            {"$sort": {"_id": ASCENDING}},
        ])
        sales = [
            {
                "period": row["_id"],
                "total_sales": round(row["total_sales"], 2),
                "order_count": row["order_count"],
                "average_order_value": round(row["average_order_value"], 2),
            }
            for row in buckets
        ]

        categories = self.orders.aggregate([
            {"$unwind": "$items"},
            {
                "$lookup": {
                    "from": "product",
                    "localField": "items.product_id",
                    "foreignField": "_id",
                    "as": "product",
                }
            },
            {"$unwind": "$product"},
            {
                "$group": {
                    "_id": "$product.category",
                    "total_sales": {"$sum": {"$multiply": ["$items.quantity", "$items.price"]}},
                    "order_count": {"$sum": 1},
                }
            },
            {"$sort": {"total_sales": DESCENDING}},
        ])
        category_sales = [
            {"category": row["_id"], "total_sales": round(row["total_sales"], 2), "order_count": row["order_count"]}
            for row in categories
        ]
        return {"sales_data": sales, "category_wise_sales": category_sales}

    def customer_analytics(self) -> dict:
        now = utcnow()
        start_of_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

        rows = list(
            self.orders.aggregate([
                {"$group": {"_id": "$user_id", "total_spent": {"$sum": "$total"}, "order_count": {"$sum": 1}}},
                {"$sort": {"total_spent": -1}},
                {"$limit": 10},
            ])
        )
        users = {
            u["_id"]: u
            for u in self.users.find({"_id": {"$in": [r["_id"] for r in rows]}}, {"name": 1, "email": 1})
        }
        top_customers = [
            {
                "user_id": row["_id"],
                "name": users.get(row["_id"], {}).get("name"),
                "email": users.get(row["_id"], {}).get("email"),
                "total_spent": round(row["total_spent"], 2),
                "order_count": row["order_count"],
            }
            for row in rows
        ]
        return {
            "total_customers": self.users.count_documents({"role": "customer"}),
            "new_customers": self.users.count_documents(
                {"role": "customer", "created_at": {"$gte": start_of_month}}
            ),
            "top_customers": top_customers,
        }

    def inventory_status(self, threshold: int = 10) -> dict:
        fields = {"name": 1, "sku": 1, "stock": 1, "category": 1, "price": 1}
        low_stock = self.products.find(
            {"is_active": True, "stock": {"$lte": threshold}}, fields
        ).sort("stock", ASCENDING)
        out_of_stock = self.products.find({"is_active": True, "stock": 0}, fields)
        value = list(
            self.products.aggregate([
                {"$match": {"is_active": True}},
                {"$group": {"_id": None, "total_value": {"$sum": {"$multiply": ["$price", "$stock"]}}}},
            ])
        )
        return {
            "low_stock_products": list(low_stock),
            "out_of_stock_products": list(out_of_stock),
            "total_inventory_value": round(value[0]["total_value"], 2) if value else 0,
        }
