"""
Order Service

Checkout, order lifecycle and reporting.

Stock is reserved one line at a time with a conditional decrement, so two
checkouts racing for the last units cannot both succeed. When a later line
cannot be reserved, or the order insert fails, every reservation already
taken is handed back before the error propagates.
"""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import DEFAULT_LIMIT, DEFAULT_PAGE
from database import create_document, get_documents, serialize_doc, to_object_id, utcnow
from dto import CreateOrderDTO
from errors import BadRequestError, NotFoundError
from pricing import estimated_delivery, format_money, order_total, shipping_cost, tax
from schemas import Address, Order, OrderItem, OrderStatus, PaymentStatus
from services.cart import CartService
from services.products import paginate

logger = logging.getLogger("vault.orders")

GUEST_USER_ID = "guest"
TIMEFRAMES = ("day", "week", "month", "year")
TOP_PRODUCTS = 5


def order_view(doc: Dict[str, Any]) -> Dict[str, Any]:
    """JSON shape of an order, with the display-only fields added."""
    view = serialize_doc(doc)
    view["formatted_total"] = format_money(doc["total_amount"])
    view["shipping_cost"] = shipping_cost(doc.get("shipping_method", "Standard"))
    view["tax"] = tax(doc["total_amount"])
    view["is_fully_shipped"] = doc["status"] in (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value)
    return view


def period_key(when: datetime, timeframe: str) -> str:
    if timeframe == "week":
        # Weeks start on Sunday.
        start = when - timedelta(days=(when.weekday() + 1) % 7)
        return start.strftime("%Y-%m-%d")
    if timeframe == "month":
        return when.strftime("%Y-%m")
    if timeframe == "year":
        return str(when.year)
    return when.strftime("%Y-%m-%d")


def _date_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> Dict[str, Any]:
    if not start_date and not end_date:
        return {}
    window: Dict[str, Any] = {}
    if start_date:
        window["$gte"] = start_date
    if end_date:
        window["$lte"] = end_date
    return {"order_date": window}


class OrderService:
    def __init__(self, db: Database, cart_service: CartService):
        self.db = db
        self.orders = db["order"]
        self.products = db["product"]
        self.counters = db["counter"]
        self.cart_service = cart_service

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.find_one({"_id": to_object_id(order_id, "order")})
        if not order:
            raise NotFoundError("Order not found")
        return order

    def next_order_number(self, when: Optional[datetime] = None) -> str:
        """ORD-YYYYMMDD-NNNN, numbered from an atomic per-day counter."""
        day = (when or utcnow()).strftime("%Y%m%d")
        counter = self.counters.find_one_and_update(
            {"_id": f"order-{day}"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return f"ORD-{day}-{counter['seq']:04d}"

    # Stock
    def _release(self, reservations: List[Tuple[Any, int]]) -> None:
        for product_oid, quantity in reservations:
            self.products.update_one({"_id": product_oid}, {"$inc": {"stock": quantity}})

    def _reserve(self, lines: List[Tuple[Dict[str, Any], int]]) -> List[Tuple[Any, int]]:
        reservations: List[Tuple[Any, int]] = []
        for product, quantity in lines:
            taken = self.products.find_one_and_update(
                {"_id": product["_id"], "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
            )
            if taken is None:
                self._release(reservations)
                logger.warning("Insufficient stock for %s (wanted %d)", product["_id"], quantity)
                raise BadRequestError("Insufficient stock")
            reservations.append((product["_id"], quantity))
        return reservations

    def create_order(self, user_id: str, data: CreateOrderDTO) -> Dict[str, Any]:
        lines: List[Tuple[Dict[str, Any], int]] = []
        items: List[OrderItem] = []
        for entry in data.items:
            product = self.products.find_one({"_id": to_object_id(entry.product, "product")})
            if not product or not product.get("is_active", True):
                raise NotFoundError(f"Product {entry.product} not found")
            if product.get("stock", 0) < entry.quantity:
                raise BadRequestError("Insufficient stock")
            lines.append((product, entry.quantity))
            items.append(OrderItem(
                product_id=str(product["_id"]),
                name=entry.name or product["name"],
                sku=entry.sku or product["sku"],
                quantity=entry.quantity,
                price=entry.price,
                variant=entry.variant.model_dump() if entry.variant else None,
            ))

        reservations = self._reserve(lines)
        try:
            now = utcnow()
            order = Order(
                order_number=self.next_order_number(now),
                user_id=user_id,
                items=items,
                total_amount=order_total(items),
                shipping_address=Address(**data.shipping_address.model_dump()),
                billing_address=Address(**data.billing_address.model_dump()),
                payment_method=data.payment_method,
                shipping_method=data.shipping_method,
                notes=data.notes,
                order_date=now,
                estimated_delivery_date=estimated_delivery(now, data.shipping_method),
            )
            order_id = create_document(self.db, "order", order)
        except (PyMongoError, ValueError):
            self._release(reservations)
            logger.exception("Order insert failed, released %d reservations", len(reservations))
            raise

        if user_id != GUEST_USER_ID:
            self.cart_service.empty_after_checkout(user_id)
        logger.info("Order %s created for %s (%s)", order.order_number, user_id, format_money(order.total_amount))
        return self._load(order_id)

    # Lifecycle
    def _restore_stock(self, order: Dict[str, Any]) -> None:
        claimed = self.orders.find_one_and_update(
            {"_id": order["_id"], "stock_restored": {"$ne": True}},
            {"$set": {"stock_restored": True}},
        )
        if claimed is None:
            return
        self._release([(to_object_id(i["product_id"]), i["quantity"]) for i in order["items"]])
        logger.info("Returned stock for cancelled order %s", order["order_number"])

    def update_order_status(self, order_id: str, status: Any, tracking_number: Optional[str] = None) -> Dict[str, Any]:
        order = self._load(order_id)
        status = OrderStatus(status)
        now = utcnow()
        changes: Dict[str, Any] = {"status": status.value, "updated_at": now}
        if status == OrderStatus.SHIPPED:
            changes["shipped_date"] = now
        elif status == OrderStatus.DELIVERED:
            changes["delivered_date"] = now
        if tracking_number:
            changes["tracking_number"] = tracking_number
        self.orders.update_one({"_id": order["_id"]}, {"$set": changes})
        if status == OrderStatus.CANCELLED and order["status"] != OrderStatus.CANCELLED.value:
            self._restore_stock(order)
        logger.info("Order %s: %s -> %s", order["order_number"], order["status"], status.value)
        return self._load(order_id)

    def update_payment_status(self, order_id: str, payment_status: Any) -> Dict[str, Any]:
        order = self._load(order_id)
        self.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"payment_status": PaymentStatus(payment_status).value, "updated_at": utcnow()}},
        )
        return self._load(order_id)

    def process_refund(self, order_id: str, amount: float) -> Dict[str, Any]:
        order = self._load(order_id)
        if amount <= 0:
            raise BadRequestError("Refund amount must be greater than zero")
        if amount > order["total_amount"]:
            raise BadRequestError("Refund amount cannot exceed order total")
        payment_status = PaymentStatus.REFUNDED if amount == order["total_amount"] else PaymentStatus.PARTIALLY_REFUNDED
        self.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"refund_amount": amount, "payment_status": payment_status.value, "updated_at": utcnow()}},
        )
        logger.info("Refunded %s on order %s", format_money(amount), order["order_number"])
        return self._load(order_id)

    # Queries
    def get_order_by_id(self, order_id: str) -> Dict[str, Any]:
        return self._load(order_id)

    def get_guest_order(self, order_id: str) -> Dict[str, Any]:
        order = self._load(order_id)
        if order["user_id"] != GUEST_USER_ID:
            raise NotFoundError("Order not found")
        return order

    def get_orders(self, user_id: Optional[str] = None, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT,
                   status: Optional[str] = None, payment_status: Optional[str] = None,
                   start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Orders newest first. `user_id=None` lists every customer's orders."""
        query: Dict[str, Any] = _date_range(start_date, end_date)
        if user_id is not None:
            query["user_id"] = user_id
        if status:
            query["status"] = status
        if payment_status:
            query["payment_status"] = payment_status
        total = self.orders.count_documents(query)
        cursor = self.orders.find(query).sort("order_date", -1).skip((page - 1) * limit).limit(limit)
        meta = paginate(page, limit, total)
        return {"orders": list(cursor), "total": total, "page": page, "totalPages": meta["totalPages"]}

    def get_order_history(self, user_id: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT,
                          **filters: Any) -> Dict[str, Any]:
        return self.get_orders(user_id, page, limit, **filters)

    def get_order_analytics(self, timeframe: str = "month", start_date: Optional[datetime] = None,
                            end_date: Optional[datetime] = None) -> Dict[str, Any]:
        if timeframe not in TIMEFRAMES:
            raise BadRequestError("Invalid timeframe")
        orders = get_documents(self.db, "order", _date_range(start_date, end_date))
        total_revenue = sum(o["total_amount"] for o in orders)
        buckets: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"orders": 0, "revenue": 0.0})
        for o in orders:
            bucket = buckets[period_key(o["order_date"], timeframe)]
            bucket["orders"] += 1
            bucket["revenue"] += o["total_amount"]
        return {
            "total_orders": len(orders),
            "total_revenue": round(total_revenue, 2),
            "average_order_value": round(total_revenue / len(orders), 2) if orders else 0,
            "orders_by_status": dict(Counter(o["status"] for o in orders)),
            "revenue_by_timeframe": [
                {"date": key, "orders": b["orders"], "revenue": round(b["revenue"], 2)}
                for key, b in sorted(buckets.items())
            ],
        }

    def get_user_purchase_trends(self, user_id: str, start_date: Optional[datetime] = None,
                                 end_date: Optional[datetime] = None) -> Dict[str, Any]:
        query = _date_range(start_date, end_date)
        query["user_id"] = user_id
        orders = get_documents(self.db, "order", query)
        total_spent = sum(o["total_amount"] for o in orders)

        counts: Dict[str, Dict[str, Any]] = {}
        for o in orders:
            for item in o["items"]:
                entry = counts.setdefault(item["product_id"], {"product_id": item["product_id"],
                                                               "name": item["name"], "count": 0})
                entry["count"] += item["quantity"]
        frequent = sorted(counts.values(), key=lambda e: e["count"], reverse=True)[:TOP_PRODUCTS]

        history = sorted(
            ({"date": o["order_date"].strftime("%Y-%m-%d"), "amount": o["total_amount"]} for o in orders),
            key=lambda h: h["date"],
        )
        return {
            "total_spent": round(total_spent, 2),
            "order_count": len(orders),
            "average_order_value": round(total_spent / len(orders), 2) if orders else 0,
            "frequently_purchased_products": frequent,
            "purchase_history": history,
        }
