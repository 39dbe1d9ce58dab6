from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from marketplace.api.v1 import api_router
from marketplace.core.errors import register_exception_handlers
from marketplace.core.health import APP_VERSION
from marketplace.core.limiter import limiter
from marketplace.core.logging import configure_logging
from marketplace.core.response_envelope import register_response_envelope
from marketplace.core.settings import Settings, settings
from marketplace.events import register_event_handlers
from marketplace.middlewares.request_context import RequestContextMiddleware
from marketplace.middlewares.security_headers import SecurityHeadersMiddleware
from marketplace.middlewares.trust_proxies import TrustedProxiesMiddleware


def register_middlewares(app: FastAPI, config: Settings) -> None:
    # Added innermost first; CORS ends up outermost.
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(TrustedProxiesMiddleware, proxies_count=config.proxies_count)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=config.enable_hsts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


def create_app(config: Settings = settings) -> FastAPI:
    configure_logging(config.log_level)
    app = FastAPI(title="Lender Marketplace", version=APP_VERSION)
    register_exception_handlers(app)
    register_response_envelope(app)
    register_middlewares(app, config)
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
