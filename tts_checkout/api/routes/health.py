from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tts_checkout.core.config import Settings
from tts_checkout.flows.registry import CheckoutRegistry
from tts_checkout.payments.stripe_bridge import StripeConfirmationBridge

router = APIRouter(tags=["health"])


def _registry(request: Request) -> CheckoutRegistry:
    return request.app.state.checkout_registry


def _bridge_problem(settings: Settings) -> str | None:
    if settings.payment_bridge.lower() == StripeConfirmationBridge.name and not settings.stripe_secret_key:
        return "stripe_secret_key_missing"
    return None


@router.get("/")
async def root(request: Request) -> dict[str, object]:
    return {"status": "ok", "service": "tts_checkout", "activeCheckouts": _registry(request).active_sessions}


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness(request: Request) -> JSONResponse:
    registry = _registry(request)
    reasons: list[str] = []
    try:
        registry.slots.ping()
    except SQLAlchemyError as exc:
        reasons.append(f"checkout_store_unavailable: {exc.__class__.__name__}")
    bridge_problem = _bridge_problem(registry.settings)
    if bridge_problem:
        reasons.append(bridge_problem)

    if reasons:
        return JSONResponse(status_code=503, content={"status": "not_ready", "reasons": reasons})
    return JSONResponse(
        status_code=200,
        content={"status": "ready", "paymentBridge": registry.settings.payment_bridge},
    )
