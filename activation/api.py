from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import Body, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from .config import Settings, get_settings
from .logging_config import setup_logging
from .models import (
    ConfirmationFailure,
    ConfirmationRequest,
    ConfirmationResponse,
    ConfirmationResult,
    FailureKind,
)
from .service import ConfirmationService

logger = structlog.get_logger(__name__)

CONFIRM_ROUTES = ("/confirm", "/paystack-confirm")

STATUS_BY_KIND = {
    FailureKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    FailureKind.PAYMENT_NOT_SUCCESSFUL: status.HTTP_400_BAD_REQUEST,
    FailureKind.USER_NOT_FOUND: status.HTTP_400_BAD_REQUEST,
    FailureKind.ALREADY_ACTIVATED: status.HTTP_409_CONFLICT,
    FailureKind.GATEWAY_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    FailureKind.ACTIVATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _json(response: ConfirmationResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        content=response.model_dump(by_alias=True, exclude_none=True),
        status_code=status_code,
    )


def to_http_response(result: ConfirmationResult) -> JSONResponse:
    if isinstance(result, ConfirmationFailure):
        return _json(
            ConfirmationResponse(success=False, error=result.error),
            STATUS_BY_KIND[result.kind],
        )
    return _json(
        ConfirmationResponse(success=True, message=result.message, welcome_bonus=float(result.welcome_bonus)),
        status.HTTP_200_OK,
    )


def create_app(service: Optional[ConfirmationService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    service = service or ConfirmationService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        service.close()

    app = FastAPI(
        title="Account Activation API",
        description="Confirms Paystack payments and activates user accounts with a welcome bonus",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    app.state.service = service

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _json(ConfirmationResponse(success=False, error="Invalid request body"), status.HTTP_400_BAD_REQUEST)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": settings.APP_NAME}

    for path in CONFIRM_ROUTES:
        app.add_api_route(path, preflight, methods=["OPTIONS"], include_in_schema=False)
        app.add_api_route(path, confirm_payment, methods=["POST"], tags=["Payments"])

    return app


def preflight() -> PlainTextResponse:
    return PlainTextResponse("ok")


def confirm_payment(request: Request, payload: Optional[dict[str, Any]] = Body(default=None)) -> JSONResponse:
    service: ConfirmationService = request.app.state.service
    try:
        confirmation = ConfirmationRequest.model_validate(payload or {})
    except ValidationError:
        return _json(ConfirmationResponse(success=False, error="Invalid request body"), status.HTTP_400_BAD_REQUEST)

    try:
        result = service.confirm(confirmation)
    except Exception as e:
        logger.exception("payment_confirmation_error", reference=confirmation.reference, user_id=confirmation.user_id)
        return _json(ConfirmationResponse(success=False, error=str(e)), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return to_http_response(result)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
