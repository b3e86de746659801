from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings
from errors import UnauthorizedError

JWT_ALGORITHM = "HS256"


class TokenData(BaseModel):
    id: str
    email: str
    role: str


class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        return self.context.verify(password, password_hash)


class TokenIssuer:
    def __init__(self, settings: Settings):
        self.secret = settings.jwt_secret
        self.expires_in = timedelta(hours=settings.jwt_expires_hours)

    @property
    def expires_in_seconds(self) -> int:
        return int(self.expires_in.total_seconds())

    def create_token(self, user_doc: Dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": str(user_doc.get("_id")),
            "email": user_doc.get("email"),
            "role": user_doc.get("role", "customer"),
            "iat": now,
            "exp": now + self.expires_in,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def decode_token(self, token: str) -> TokenData:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
            return TokenData(id=payload["id"], email=payload["email"], role=payload.get("role", "customer"))
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except (jwt.InvalidTokenError, KeyError):
            raise UnauthorizedError("Invalid or expired token")
