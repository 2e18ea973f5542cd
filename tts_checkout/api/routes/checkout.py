from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tts_checkout.flows.checkout_flow import CheckoutFlow
from tts_checkout.flows.checkout_state_machine import CheckoutEvent
from tts_checkout.flows.registry import CheckoutRegistry
from tts_checkout.schemas.checkout import CustomerIdentity
from tts_checkout.schemas.quote import QuoteSnapshot
from tts_checkout.services.quote_snapshot import QuoteSnapshotStore

router = APIRouter(prefix="/checkout", tags=["checkout"])


class _CamelPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerPayload(_CamelPayload):
    user_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None

    def to_identity(self) -> CustomerIdentity:
        return CustomerIdentity(
            user_id=self.user_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
        )


class StartPayload(_CamelPayload):
    customer: CustomerPayload | None = None


class PayPayload(_CamelPayload):
    payment_method: str | None = None


def _registry(request: Request) -> CheckoutRegistry:
    return request.app.state.checkout_registry


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _flow_or_404(registry: CheckoutRegistry, session_key: str) -> CheckoutFlow:
    flow = registry.get(session_key)
    if flow is None:
        raise HTTPException(status_code=404, detail="Checkout not found")
    return flow


def _ensure_allowed(flow: CheckoutFlow, event: CheckoutEvent) -> None:
    decision = flow.can(event)
    if not decision.allowed:
        raise HTTPException(status_code=409, detail=decision.guard_reason)


@router.post("/{session_key}/quote", status_code=201)
async def store_quote(session_key: str, snapshot: QuoteSnapshot, request: Request) -> dict[str, str]:
    QuoteSnapshotStore(_registry(request).slots).save(session_key, snapshot)
    return {"status": "stored"}


@router.post("/{session_key}/start", status_code=202)
async def start_checkout(
    session_key: str,
    request: Request,
    payload: StartPayload | None = None,
    authorization: str | None = Header(default=None),
) -> dict[str, object]:
    registry = _registry(request)
    identity = payload.customer.to_identity() if payload and payload.customer else None
    flow = registry.get_or_create(
        session_key,
        access_token=_bearer_token(authorization),
        identity=identity,
    )
    registry.spawn(session_key, flow.start())
    return flow.view().to_dict()


@router.post("/{session_key}/authenticate", status_code=202)
async def authenticate_checkout(
    session_key: str,
    payload: CustomerPayload,
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, object]:
    registry = _registry(request)
    flow = _flow_or_404(registry, session_key)
    registry.set_access_token(session_key, _bearer_token(authorization))
    registry.spawn(session_key, flow.authenticate(payload.to_identity()))
    return flow.view().to_dict()


@router.post("/{session_key}/retry-booking", status_code=202)
async def retry_booking(session_key: str, request: Request) -> dict[str, object]:
    registry = _registry(request)
    flow = _flow_or_404(registry, session_key)
    _ensure_allowed(flow, "booking_retry")
    registry.spawn(session_key, flow.retry_booking())
    return flow.view().to_dict()


@router.post("/{session_key}/reset-booking", status_code=202)
async def reset_booking(session_key: str, request: Request) -> dict[str, object]:
    registry = _registry(request)
    flow = _flow_or_404(registry, session_key)
    if not flow.reset_allowed():
        raise HTTPException(status_code=409, detail="booking_retry_not_available")
    registry.spawn(session_key, flow.reset_booking_attempts())
    return flow.view().to_dict()


@router.post("/{session_key}/retry-payment", status_code=202)
async def retry_payment(session_key: str, request: Request) -> dict[str, object]:
    registry = _registry(request)
    flow = _flow_or_404(registry, session_key)
    _ensure_allowed(flow, "payment_retry")
    registry.spawn(session_key, flow.retry_payment())
    return flow.view().to_dict()


@router.post("/{session_key}/pay", status_code=202)
async def submit_payment(
    session_key: str,
    request: Request,
    payload: PayPayload | None = None,
) -> dict[str, object]:
    registry = _registry(request)
    flow = _flow_or_404(registry, session_key)
    _ensure_allowed(flow, "payment_confirmed")
    payment_method = payload.payment_method if payload else None
    registry.spawn(session_key, flow.submit_payment(payment_method))
    return flow.view().to_dict()


@router.get("/{session_key}")
async def checkout_view(session_key: str, request: Request) -> dict[str, object]:
    flow = _flow_or_404(_registry(request), session_key)
    return flow.view().to_dict()


@router.delete("/{session_key}", status_code=204)
async def teardown_checkout(session_key: str, request: Request) -> Response:
    if not await _registry(request).teardown(session_key):
        raise HTTPException(status_code=404, detail="Checkout not found")
    return Response(status_code=204)
