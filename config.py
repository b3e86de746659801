import os
from typing import List

from pydantic import BaseModel

DEV_JWT_SECRET = "devsecret_change_me"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class Settings(BaseModel):
    jwt_secret: str = DEV_JWT_SECRET
    jwt_expires_hours: int = 24
    mongodb_uri: str = "mongodb://localhost:27017/vault-skate"
    port: int = 5000
    cors_origins: List[str] = ["*"]
    environment: str = "development"
    bcrypt_rounds: int = 10
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("APP_ENV") or os.getenv("NODE_ENV", "development")
        jwt_secret = os.getenv("JWT_SECRET")
        if not jwt_secret:
            if environment == "production":
                raise RuntimeError("JWT_SECRET is not defined")
            jwt_secret = DEV_JWT_SECRET
        origins = os.getenv("CORS_ORIGIN", "*").split(",")
        return cls(
            jwt_secret=jwt_secret,
            jwt_expires_hours=int(os.getenv("JWT_EXPIRES_HOURS", "24")),
            mongodb_uri=os.getenv("MONGODB_URI", cls.model_fields["mongodb_uri"].default),
            port=int(os.getenv("PORT", "5000")),
            cors_origins=[o.strip() for o in origins if o.strip()] or ["*"],
            environment=environment,
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
