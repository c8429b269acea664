import secrets
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from storefront.db.models import Order, OrderItem, utcnow
from storefront.errors import OrderNotFoundError, OrderStatusError, PersistenceError
from storefront.schemas import (
    PAYMENT_METHOD,
    OrderHeaderFields,
    OrderItemCreate,
    OrderItemRead,
    OrderRead,
    OrderStatus,
    OrderWithItems,
)

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


class OrderService(Protocol):
    def create_order_header(self, fields: OrderHeaderFields) -> OrderRead: ...

    def create_order_line_items(self, order_id: int, items: Iterable[OrderItemCreate]) -> List[OrderItemRead]: ...

    def get_order_by_number(self, order_number: str) -> Optional[OrderWithItems]: ...

    def update_status(self, order_id: int, status: OrderStatus,
                      expected: Optional[OrderStatus] = None) -> None: ...

    def discard_order_header(self, order_id: int) -> bool: ...


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class SqlOrderService:
    """Order headers and line items stored through SQLAlchemy.

    Header and items are written in separate transactions; see
    ``discard_order_header`` for undoing a header whose items never landed.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_order_header(self, fields: OrderHeaderFields) -> OrderRead:
        last_error = None
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            with self.session_factory() as db:
                order = Order(
                    **fields.model_dump(),
                    order_number=generate_order_number(),
                    status=OrderStatus.PENDING.value,
                    payment_method=PAYMENT_METHOD,
                )
                try:
                    db.add(order); db.commit(); db.refresh(order)
                    return OrderRead.model_validate(order)
                except IntegrityError as e:
                    db.rollback()
                    logger.warning("Order number collision, retrying",
                                   order_number=order.order_number, attempt=attempt + 1)
                    last_error = e
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error("Failed to create order header", error=str(e))
                    raise PersistenceError("Failed to create order") from e
        raise PersistenceError("Could not allocate a unique order number") from last_error

    def create_order_line_items(self, order_id: int, items: Iterable[OrderItemCreate]) -> List[OrderItemRead]:
        with self.session_factory() as db:
            try:
                if db.get(Order, order_id) is None:
                    raise PersistenceError(f"Order {order_id} does not exist")
                rows = [OrderItem(order_id=order_id, **it.model_dump()) for it in items]
                db.add_all(rows); db.commit()
                for row in rows:
                    db.refresh(row)
                return [OrderItemRead.model_validate(r) for r in rows]
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to create order items", order_id=order_id, error=str(e))
                raise PersistenceError("Failed to create order items") from e

    def get_order_by_number(self, order_number: str) -> Optional[OrderWithItems]:
        with self.session_factory() as db:
            try:
                order = db.execute(
                    select(Order).options(selectinload(Order.items)).where(Order.order_number == order_number)
                ).scalar_one_or_none()
            except SQLAlchemyError as e:
                raise PersistenceError("Failed to fetch order") from e
            return OrderWithItems.model_validate(order) if order else None

    def list_orders(self, user_id: Optional[str] = None, email: Optional[str] = None) -> List[OrderRead]:
        stmt = select(Order)
        if user_id is not None: stmt = stmt.where(Order.user_id == user_id)
        if email is not None: stmt = stmt.where(Order.customer_email == email)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
        with self.session_factory() as db:
            try:
                return [OrderRead.model_validate(o) for o in db.execute(stmt).scalars().all()]
            except SQLAlchemyError as e:
                raise PersistenceError("Failed to fetch orders") from e

    def update_status(self, order_id: int, status: OrderStatus,
                      expected: Optional[OrderStatus] = None) -> None:
        """Set the status, optionally only if it is still ``expected``."""
        stmt = update(Order).where(Order.id == order_id)
        if expected is not None:
            stmt = stmt.where(Order.status == expected.value)
        stmt = stmt.values(status=status.value, updated_at=utcnow())
        with self.session_factory() as db:
            try:
                res = db.execute(stmt)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError("Failed to update order status") from e
            if res.rowcount == 0:
                if expected is None or db.get(Order, order_id) is None:
                    raise OrderNotFoundError(str(order_id))
                raise OrderStatusError(f"Order {order_id} is no longer {expected.value}")

    def discard_order_header(self, order_id: int) -> bool:
        """Delete a header that has no line items. Safe to call repeatedly."""
        with self.session_factory() as db:
            try:
                order = db.get(Order, order_id)
                if order is None or order.items:
                    return False
                db.delete(order); db.commit()
                return True
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to discard order {order_id}") from e

    def list_incomplete_headers(self, older_than: Optional[datetime] = None) -> List[OrderRead]:
        stmt = select(Order).where(~Order.items.any())
        if older_than is not None:
            stmt = stmt.where(Order.created_at < older_than)
        with self.session_factory() as db:
            try:
                return [OrderRead.model_validate(o) for o in db.execute(stmt.order_by(Order.id)).scalars().all()]
            except SQLAlchemyError as e:
                raise PersistenceError("Failed to list incomplete orders") from e
