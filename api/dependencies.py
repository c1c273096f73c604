"""
API依赖项
The payment service is assembled once in the application lifespan and
shared through app.state; tests override this dependency.
"""
from fastapi import Request

from application.services.payment_service import PaymentApplicationService


def get_payment_service(request: Request) -> PaymentApplicationService:
    return request.app.state.payment_service
