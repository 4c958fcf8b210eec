"""FastAPI dependencies resolving components from the application container."""
from fastapi import Depends, Request

from checkout.container import Container
from checkout.services.payment_service import PaymentService


def get_container(request: Request) -> Container:
    """
    Container dependency.

    Returns:
        Container: Component graph built in the application lifespan
    """
    return request.app.state.container


def get_payment_service(container: Container = Depends(get_container)) -> PaymentService:
    return container.payment_service
