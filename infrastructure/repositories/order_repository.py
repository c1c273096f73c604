"""
Order repository - SQLAlchemy implementation of the payment subset
"""
from typing import Optional
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.order.entity import Order, OrderPaymentStatus
from domain.order.repository import OrderRepository
from domain.payment.exceptions import OrderNotFoundError
from infrastructure.models.order import OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            order_number=model.order_number,
            total_amount=Decimal(str(model.total_amount)),
            currency=model.currency,
            payment_status=OrderPaymentStatus(model.payment_status),
            payment_method=model.payment_method,
            payment_metadata=dict(model.payment_metadata or {}),
            user_id=model.user_id,
            session_id=model.session_id,
            customer_name=model.customer_name,
            customer_email=model.customer_email,
            customer_phone=model.customer_phone,
        )

    async def _get_model(self, order_id: int, *, for_update: bool = False) -> Optional[OrderModel]:
        stmt = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        db_order = await self._get_model(order_id, for_update=for_update)
        return self._to_entity(db_order) if db_order else None

    async def save_payment_state(self, order: Order) -> Order:
        db_order = await self._get_model(order.id)
        if not db_order:
            raise OrderNotFoundError(order.id)
        previous = db_order.payment_status
        db_order.payment_status = order.payment_status.value
        db_order.payment_method = order.payment_method
        db_order.payment_metadata = dict(order.payment_metadata)
        await self.session.flush()
        if previous != db_order.payment_status:
            logger.info(
                "order_payment_status_changed",
                order_id=order.id,
                old=previous,
                new=db_order.payment_status,
            )
        return self._to_entity(db_order)
