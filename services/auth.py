"""
Authentication Service

Registration, login with lockout, profile and address-book management, and
password changes. Token signing is delegated to TokenIssuer.
"""
import logging
from typing import Any, Dict

from pymongo.database import Database

from database import to_object_id, utcnow
from dto import AddressDTO, ChangePasswordDTO, LoginDTO, ProfileUpdateDTO, RegisterDTO
from errors import BadRequestError, NotFoundError, UnauthorizedError
from schemas import Address, UserRole
from security import TokenData, TokenIssuer
from services.users import UserService, public_user

logger = logging.getLogger("vault.auth")


class AuthService:
    def __init__(self, db: Database, user_service: UserService, tokens: TokenIssuer):
        self.users = db["user"]
        self.user_service = user_service
        self.tokens = tokens

    def _auth_response(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "user": public_user(user),
            "token": self.tokens.create_token(user),
            "expires_in": self.tokens.expires_in_seconds,
        }

    def _load(self, user_id: str) -> Dict[str, Any]:
        user = self.user_service.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(self, data: RegisterDTO) -> Dict[str, Any]:
        extra = data.model_dump(exclude={"first_name", "last_name", "email", "password"}, exclude_none=True)
        user = self.user_service.create_user(
            data.first_name, data.last_name, data.email, data.password, role=UserRole.CUSTOMER, **extra
        )
        return self._auth_response(user)

    def login(self, data: LoginDTO) -> Dict[str, Any]:
        user = self.user_service.find_by_email(data.email)
        if not user:
            raise UnauthorizedError("Invalid credentials")
        if self.user_service.is_locked(user):
            raise UnauthorizedError("Account is temporarily locked. Please try again later.")
        if not self.user_service.compare_password(user, data.password):
            self.user_service.record_failed_login(data.email)
            logger.warning("Failed login for %s", user["email"])
            raise UnauthorizedError("Invalid credentials")
        self.user_service.reset_failed_logins(user["_id"])
        self.user_service.update_last_login(user["_id"])
        return self._auth_response(self.users.find_one({"_id": user["_id"]}))

    def decode_token(self, token: str) -> TokenData:
        return self.tokens.decode_token(token)

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        return public_user(self._load(user_id))

    def update_profile(self, user_id: str, updates: ProfileUpdateDTO) -> Dict[str, Any]:
        user = self._load(user_id)
        changes = updates.model_dump(exclude_unset=True)
        if changes:
            changes["updated_at"] = utcnow()
            self.users.update_one({"_id": user["_id"]}, {"$set": changes})
        return public_user(self._load(user_id))

    def add_address(self, user_id: str, address_input: AddressDTO) -> Dict[str, Any]:
        """Append an address. The first address, or any address flagged default, becomes the only default."""
        user = self._load(user_id)
        now = utcnow()
        address = Address(**address_input.model_dump(), created_at=now, updated_at=now).model_dump()
        addresses = list(user.get("addresses") or [])
        if address["is_default"] or not addresses:
            address["is_default"] = True
            for existing in addresses:
                existing["is_default"] = False
        addresses.append(address)
        self.users.update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": now}})
        return public_user(self._load(user_id))

    def remove_address(self, user_id: str, address_index: int) -> Dict[str, Any]:
        user = self._load(user_id)
        addresses = list(user.get("addresses") or [])
        if address_index < 0 or address_index >= len(addresses):
            raise NotFoundError("Address not found")
        removed = addresses.pop(address_index)
        if removed.get("is_default") and addresses:
            addresses[0]["is_default"] = True
        self.users.update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
        return public_user(self._load(user_id))

    def change_password(self, user_id: str, data: ChangePasswordDTO) -> bool:
        user = self._load(user_id)
        if not self.user_service.compare_password(user, data.current_password):
            raise BadRequestError("Current password is incorrect")
        self.user_service.set_password(to_object_id(user["_id"]), data.new_password)
        logger.info("Password changed for %s", user["email"])
        return True
