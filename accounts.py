"""Account service: users, credentials and the address book."""

from typing import Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, oid, paginate, pagination_info, utcnow
from errors import AddressNotFound, DuplicateEmail, Unauthorized, UserNotFound, ValidationFailed
from schemas import Address, User
from security import hash_password, verify_password

logger = structlog.get_logger(__name__)

# Never returned outward.
PUBLIC_PROJECTION = {"password_hash": 0}


class AccountService:
    def __init__(self, db: Database):
        self.db = db
        self.users = db["user"]

    def create_user(self, name: str, email: str, password: str, phone: Optional[str] = None, role: str = "customer") -> dict:
        email = email.strip().lower()
        if self.users.find_one({"email": email}):
            raise DuplicateEmail()
        user = User(name=name, email=email, password_hash=hash_password(password), phone=phone, role=role)
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise DuplicateEmail()
        logger.info("User registered", user_id=str(user_id), role=role)
        return self.users.find_one({"_id": user_id}, PUBLIC_PROJECTION)

    def authenticate(self, email: str, password: str) -> dict:
        user = self.users.find_one({"email": email.strip().lower()})
        if not user or not verify_password(password, user["password_hash"]):
            raise Unauthorized("Invalid credentials")
        if not user.get("is_active", True):
            raise Unauthorized("User account is inactive")
        return self.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": {"last_login": utcnow()}},
            projection=PUBLIC_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )

    def get_user_by_id(self, user_id) -> dict:
        user = self.users.find_one({"_id": oid(user_id)}, PUBLIC_PROJECTION)
        if not user:
            raise UserNotFound()
        return user

    def update_user(self, user_id, update_data: dict) -> dict:
        # Email and password have their own flows.
        changes = {k: v for k, v in update_data.items() if k in ("name", "phone") and v is not None}
        changes["updated_at"] = utcnow()
        return self._update(user_id, {"$set": changes})

    def change_password(self, user_id, old_password: str, new_password: str) -> None:
        user = self.users.find_one({"_id": oid(user_id)})
        if not user:
            raise UserNotFound()
        if not verify_password(old_password, user["password_hash"]):
            raise ValidationFailed("Current password is incorrect")
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
        )
        logger.info("Password changed", user_id=str(user["_id"]))

    def get_all_customers(self, page: int = 1, limit: int = 10) -> dict:
        query = {"role": "customer"}
        pages = paginate(page, limit)
        customers = list(
            self.users.find(query, PUBLIC_PROJECTION)
            .sort("created_at", DESCENDING)
            .skip(pages["skip"])
            .limit(pages["limit"])
        )
        total = self.users.count_documents(query)
        return {
            "customers": customers,
            "pagination": pagination_info(pages["page"], pages["limit"], total),
        }

    def deactivate_user(self, user_id) -> dict:
        user = self._update(user_id, {"$set": {"is_active": False, "updated_at": utcnow()}})
        logger.info("User deactivated", user_id=str(user["_id"]))
        return user

    # Address book

    def add_address(self, user_id, address_data: dict) -> dict:
        user = self.get_user_by_id(user_id)
        address = Address(**address_data).model_dump(by_alias=True)
        addresses = list(user.get("addresses", []))
        if address["is_default"]:
            addresses = [dict(a, is_default=False) for a in addresses]
        addresses.append(address)
        return self._set_addresses(user["_id"], addresses)

    def update_address(self, user_id, address_id, address_data: dict) -> dict:
        user = self.get_user_by_id(user_id)
        address_oid = oid(address_id)
        addresses = list(user.get("addresses", []))
        for index, address in enumerate(addresses):
            if address["_id"] == address_oid:
                break
        else:
            raise AddressNotFound()

        updated = dict(addresses[index], **{k: v for k, v in address_data.items() if v is not None})
        if updated.get("is_default"):
            addresses = [dict(a, is_default=False) for a in addresses]
        addresses[index] = updated
        return self._set_addresses(user["_id"], addresses)

    def delete_address(self, user_id, address_id) -> dict:
        user = self.get_user_by_id(user_id)
        address_oid = oid(address_id)
        addresses = [a for a in user.get("addresses", []) if a["_id"] != address_oid]
        if len(addresses) == len(user.get("addresses", [])):
            raise AddressNotFound()
        return self._set_addresses(user["_id"], addresses)

    def get_address(self, user_id, address_id) -> dict:
        user = self.get_user_by_id(user_id)
        address_oid = oid(address_id)
        for address in user.get("addresses", []):
            if address["_id"] == address_oid:
                return address
        raise AddressNotFound()

    def _set_addresses(self, user_oid, addresses: list) -> dict:
        return self._update(user_oid, {"$set": {"addresses": addresses, "updated_at": utcnow()}})

    def _update(self, user_id, update: dict) -> dict:
        user = self.users.find_one_and_update(
            {"_id": oid(user_id)},
            update,
            projection=PUBLIC_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise UserNotFound()
        return user
