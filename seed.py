"""Demo data: the admin account and a starter catalog.

Run directly to seed the database named by DATABASE_URL / DATABASE_NAME.
"""

import structlog

import settings
from accounts import AccountService
from catalog import CatalogService
from errors import DuplicateEmail, DuplicateSKU

logger = structlog.get_logger(__name__)

DEMO_PRODUCTS = [
    {
        "name": "Wireless Noise-Cancelling Headphones",
        "description": "Over-ear headphones with 30 hours of battery life.",
        "category": "Electronics",
        "price": 199.99,
        "stock": 40,
        "sku": "ELEC-HEAD-001",
        "images": ["https://images.unsplash.com/photo-1518441902110-266b0c47b1ab?q=80&w=1200&auto=format&fit=crop"],
    },
    {
        "name": "Ultralight Laptop 14",
        "description": "Fast, silent, all-day battery.",
        "category": "Electronics",
        "price": 1299.0,
        "stock": 12,
        "sku": "ELEC-LAPT-002",
        "images": ["https://images.unsplash.com/photo-1517336714731-489689fd1ca8?q=80&w=1200&auto=format&fit=crop"],
    },
    {
        "name": "Slim Fit Denim Jeans",
        "description": "Classic five-pocket slim fit denim.",
        "category": "Clothing",
        "price": 59.0,
        "stock": 100,
        "sku": "CLTH-JEAN-001",
        "images": ["https://images.unsplash.com/photo-1515955656352-a1fa3ffcd111?q=80&w=1200&auto=format&fit=crop"],
    },
    {
        "name": "Running Sneakers",
        "description": "Lightweight cushioned sneakers for daily runs.",
        "category": "Sports & Outdoors",
        "price": 129.0,
        "stock": 60,
        "sku": "SPRT-SNKR-001",
        "images": ["https://images.unsplash.com/photo-1525966222134-fcfa99b8ae77?q=80&w=1200&auto=format&fit=crop"],
    },
    {
        "name": "Ceramic Plant Pot Set",
        "description": "Three matte ceramic pots with drainage trays.",
        "category": "Home & Garden",
        "price": 34.5,
        "stock": 8,
        "sku": "HOME-POTS-001",
    },
    {
        "name": "The Pragmatic Programmer",
        "description": "A classic guide to the craft of software development.",
        "category": "Books",
        "price": 42.0,
        "stock": 25,
        "sku": "BOOK-PRAG-001",
    },
]


def seed_products(catalog: CatalogService) -> int:
    created = 0
    for data in DEMO_PRODUCTS:
        try:
            catalog.create_product(dict(data))
        except DuplicateSKU:
            continue
        created += 1
    return created


def ensure_admin(accounts: AccountService) -> None:
    try:
        accounts.create_user("Admin", settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD, role="admin")
    except DuplicateEmail:
        logger.info("Admin user already exists", email=settings.ADMIN_EMAIL)
        return
    logger.info("Admin user created", email=settings.ADMIN_EMAIL)


if __name__ == "__main__":
    from database import db, ensure_indexes
    from logging_config import configure_logging

    configure_logging()
    if db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    ensure_indexes(db)
    ensure_admin(AccountService(db))
    count = seed_products(CatalogService(db))
    logger.info("Seeding complete", products_created=count)
