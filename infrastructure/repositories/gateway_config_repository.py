"""
Read-only repository over payment_gateway_settings
"""
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.payment.entity import GatewayConfig
from domain.payment.repository import GatewayConfigRepository
from infrastructure.models.gateway_setting import PaymentGatewaySettingModel


class SQLAlchemyGatewayConfigRepository(GatewayConfigRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentGatewaySettingModel) -> GatewayConfig:
        return GatewayConfig(
            keyword=model.keyword,
            is_enabled=bool(model.is_enabled),
            is_production=bool(model.is_production),
            credentials=dict(model.credentials or {}),
            configuration=dict(model.configuration or {}),
            priority=model.priority or 0,
            display_name=model.display_name,
            description=model.description,
            supported_currencies=list(model.supported_currencies) if model.supported_currencies else None,
        )

    async def get_by_keyword(self, keyword: str) -> Optional[GatewayConfig]:
        result = await self.session.execute(
            select(PaymentGatewaySettingModel).where(PaymentGatewaySettingModel.keyword == keyword)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_all(self) -> List[GatewayConfig]:
        result = await self.session.execute(
            select(PaymentGatewaySettingModel).order_by(PaymentGatewaySettingModel.priority.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
