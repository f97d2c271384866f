"""Runtime configuration, read once from the environment."""

import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = os.getenv("JWT_ALGO", "HS256")
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 10))

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@ecommerce.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123456")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
PORT = int(os.getenv("PORT", 8000))
