from dataclasses import dataclass

from pymongo.database import Database

from config import Settings
from security import PasswordHasher, TokenIssuer
from services.auth import AuthService
from services.cart import CartService
from services.orders import OrderService
from services.products import ProductService
from services.users import UserService


@dataclass
class Services:
    users: UserService
    auth: AuthService
    products: ProductService
    cart: CartService
    orders: OrderService


def build_services(db: Database, settings: Settings) -> Services:
    """Wire every service against one database handle. Called once per app."""
    users = UserService(db, PasswordHasher(settings.bcrypt_rounds))
    cart = CartService(db)
    return Services(
        users=users,
        auth=AuthService(db, users, TokenIssuer(settings)),
        products=ProductService(db),
        cart=cart,
        orders=OrderService(db, cart),
    )


__all__ = [
    "AuthService",
    "CartService",
    "OrderService",
    "ProductService",
    "Services",
    "UserService",
    "build_services",
]
