"""
Error taxonomy shared by the inventory and order services.

Every domain failure is a ServiceError carrying a stable machine-readable
``code`` and the HTTP status it maps to. Routers let these propagate and the
handler installed by ``register_error_handlers`` renders them as
``{"detail": ..., "code": ...}``.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    code = "service_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(ServiceError):
    code = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class ProductNotFound(ServiceError):
    code = "product_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InventoryNotFound(ServiceError):
    code = "inventory_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class OrderNotFound(ServiceError):
    code = "order_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ReservationNotFound(ServiceError):
    code = "reservation_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(ServiceError):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT


class InsufficientReserved(ServiceError):
    code = "insufficient_reserved"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidReservationState(ServiceError):
    code = "invalid_reservation_state"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(ServiceError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class DependencyUnavailable(ServiceError):
    code = "dependency_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        InvalidInput,
        ProductNotFound,
        InventoryNotFound,
        OrderNotFound,
        ReservationNotFound,
        InsufficientStock,
        InsufficientReserved,
        InvalidReservationState,
        InvalidTransition,
        DependencyUnavailable,
    )
}


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies are rejected before any side effect
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.errors(), "code": InvalidInput.code},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
