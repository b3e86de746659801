"""
User Service

Core account storage: creation, lookup, password checks and the failed-login
counter that drives account lockout.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, to_object_id, utcnow
from errors import BadRequestError
from schemas import User, UserRole
from security import PasswordHasher

logger = logging.getLogger("vault.users")

MAX_FAILED_LOGINS = 5
LOCKOUT_PERIOD = timedelta(minutes=30)


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a user document without the password hash."""
    return {k: v for k, v in doc.items() if k != "password_hash"}


class UserService:
    def __init__(self, db: Database, hasher: PasswordHasher):
        self.db = db
        self.users = db["user"]
        self.hasher = hasher

    def create_user(self, first_name: str, last_name: str, email: str, password: str,
                    role: UserRole = UserRole.CUSTOMER, **extra: Any) -> Dict[str, Any]:
        email = email.lower().strip()
        if self.users.find_one({"email": email}):
            raise BadRequestError("Email already registered")
        user = User(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            password_hash=self.hasher.hash(password),
            role=role,
            **extra,
        )
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise BadRequestError("Email already registered")
        logger.info("Created %s account %s", user.role, email)
        return self.users.find_one({"_id": to_object_id(user_id)})

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.users.find_one({"email": email.lower().strip()})

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.find_one({"_id": to_object_id(user_id, "user")})

    def compare_password(self, user: Dict[str, Any], candidate: str) -> bool:
        return self.hasher.verify(candidate, user.get("password_hash", ""))

    def set_password(self, user_id: Any, new_password: str) -> None:
        now = utcnow()
        self.users.update_one(
            {"_id": to_object_id(user_id, "user")},
            {"$set": {"password_hash": self.hasher.hash(new_password),
                      "last_password_change": now, "updated_at": now}},
        )

    def record_failed_login(self, email: str) -> None:
        """Count a failed attempt; the fifth one locks the account for 30 minutes."""
        user = self.users.find_one_and_update(
            {"email": email.lower().strip()},
            {"$inc": {"failed_login_attempts": 1}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if user and user.get("failed_login_attempts", 0) >= MAX_FAILED_LOGINS:
            self.users.update_one({"_id": user["_id"]},
                                  {"$set": {"lockout_until": utcnow() + LOCKOUT_PERIOD}})
            logger.warning("Account %s locked after %d failed logins",
                           user["email"], user["failed_login_attempts"])

    def reset_failed_logins(self, user_id: Any) -> None:
        self.users.update_one(
            {"_id": to_object_id(user_id, "user")},
            {"$set": {"failed_login_attempts": 0, "lockout_until": None, "updated_at": utcnow()}},
        )

    def update_last_login(self, user_id: Any) -> None:
        self.users.update_one({"_id": to_object_id(user_id, "user")}, {"$set": {"last_login": utcnow()}})

    def is_locked(self, user: Dict[str, Any]) -> bool:
        lockout_until = user.get("lockout_until")
        return bool(lockout_until and lockout_until > utcnow())
