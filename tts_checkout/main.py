from contextlib import asynccontextmanager

from fastapi import FastAPI

from tts_checkout.api.routes.checkout import router as checkout_router
from tts_checkout.api.routes.health import router as health_router
from tts_checkout.core.config import settings
from tts_checkout.core.logging import setup_logging
from tts_checkout.flows.registry import CheckoutRegistry


def create_app(registry: CheckoutRegistry | None = None) -> FastAPI:
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        yield
        await application.state.checkout_registry.shutdown()

    application = FastAPI(title="TTS Checkout API", lifespan=lifespan)
    application.state.checkout_registry = registry or CheckoutRegistry()
    application.include_router(health_router)
    application.include_router(checkout_router)
    return application


app = create_app()
