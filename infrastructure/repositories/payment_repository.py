"""
Payment ledger repositories - SQLAlchemy implementation
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.payment.entity import Payment, Refund, PaymentStatus, RefundStatus
from domain.payment.exceptions import PaymentNotFoundError
from domain.payment.repository import PaymentRepository, RefundRepository
from infrastructure.models.payment import PaymentModel, PaymentRefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        return Payment(
            id=model.id,
            order_id=model.order_id,
            provider=model.provider,
            correlation_id=model.correlation_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            provider_ref=model.provider_ref,
            refunded_amount=Decimal(str(model.refunded_amount or 0)),
            payment_data=dict(model.payment_data or {}),
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        return PaymentModel(
            id=entity.id,
            order_id=entity.order_id,
            provider=entity.provider,
            correlation_id=entity.correlation_id,
            provider_ref=entity.provider_ref,
            amount=entity.amount,
            currency=entity.currency,
            refunded_amount=entity.refunded_amount,
            status=entity.status.value,
            failure_reason=entity.failure_reason,
            payment_data=dict(entity.payment_data),
            completed_at=entity.completed_at,
        )

    async def _get_model(self, payment_id: int, *, for_update: bool = False) -> Optional[PaymentModel]:
        stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, payment: Payment) -> Payment:
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            provider=db_payment.provider,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        db_payment = await self._get_model(payment_id, for_update=for_update)
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_correlation(self, provider: str, correlation_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.provider == provider,
                PaymentModel.correlation_id == correlation_id,
            )
            .order_by(PaymentModel.id.desc())
            .limit(1)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_latest_for_order(self, order_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .limit(1)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def list_by_order(self, order_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        db_payment = await self._get_model(payment.id)
        if not db_payment:
            raise PaymentNotFoundError(str(payment.id))

        db_payment.correlation_id = payment.correlation_id
        db_payment.provider_ref = payment.provider_ref
        db_payment.status = payment.status.value
        db_payment.refunded_amount = payment.refunded_amount
        db_payment.failure_reason = payment.failure_reason
        # new dict so the JSON column is flagged dirty
        db_payment.payment_data = dict(payment.payment_data)
        db_payment.completed_at = payment.completed_at

        await self.session.flush()
        await self.session.refresh(db_payment)

        logger.info(
            "payment_updated",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)


class SQLAlchemyRefundRepository(RefundRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRefundModel) -> Refund:
        return Refund(
            id=model.id,
            payment_id=model.payment_id,
            amount=Decimal(str(model.amount)),
            status=RefundStatus(model.status),
            refund_id=model.refund_id,
            reason=model.reason,
            refund_data=dict(model.refund_data or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, refund: Refund) -> Refund:
        db_refund = PaymentRefundModel(
            payment_id=refund.payment_id,
            refund_id=refund.refund_id,
            amount=refund.amount,
            status=refund.status.value,
            reason=refund.reason,
            refund_data=dict(refund.refund_data),
        )
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info(
            "payment_refund_created",
            refund_row_id=db_refund.id,
            payment_id=db_refund.payment_id,
            amount=str(db_refund.amount),
            status=db_refund.status,
        )
        return self._to_entity(db_refund)

    async def _get_model(self, refund_row_id: int, *, for_update: bool = False) -> Optional[PaymentRefundModel]:
        stmt = select(PaymentRefundModel).where(PaymentRefundModel.id == refund_row_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, refund_row_id: int, *, for_update: bool = False) -> Optional[Refund]:
        db_refund = await self._get_model(refund_row_id, for_update=for_update)
        return self._to_entity(db_refund) if db_refund else None

    async def update(self, refund: Refund) -> Refund:
        db_refund = await self._get_model(refund.id)
        if not db_refund:
            raise PaymentNotFoundError(f"refund {refund.id}")

        db_refund.refund_id = refund.refund_id
        db_refund.status = refund.status.value
        db_refund.refund_data = dict(refund.refund_data)

        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info(
            "payment_refund_updated",
            refund_row_id=db_refund.id,
            payment_id=db_refund.payment_id,
            status=db_refund.status,
        )
        return self._to_entity(db_refund)

    async def list_by_payment(self, payment_id: int) -> List[Refund]:
        result = await self.session.execute(
            select(PaymentRefundModel)
            .where(PaymentRefundModel.payment_id == payment_id)
            .order_by(PaymentRefundModel.created_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]
