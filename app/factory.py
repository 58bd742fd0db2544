"""
FastAPI application factory.
"""

import logging
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings
from .core.database import init_db, close_db, get_session_factory
from .core.errors import StoreError
from .core.redis import close_redis
from .api.router import router
from .orchestrator.orchestrator import ChatServices
from .services.assistants import AssistantsClient
from .services.renderer import VideoRenderer, build_renderer
from .services.responder import ChatResponder
from .services.scheduler import VideoJobScheduler
from .services.store import ChatStore
from .services.video_jobs import VideoJobOrchestrator

logger = logging.getLogger(__name__)

# Extra slack before a generating turn with no live poller counts as abandoned
STALE_GRACE_SECONDS = 60


def build_services(
    store: ChatStore,
    renderer: VideoRenderer,
    assistants: AssistantsClient,
) -> ChatServices:
    """Wire the chat pipeline. The renderer is fixed for the life of the process."""
    videos = VideoJobOrchestrator(renderer)
    return ChatServices(
        store=store,
        responder=ChatResponder(store, assistants),
        renderer=renderer,
        videos=videos,
        scheduler=VideoJobScheduler(store, videos),
    )


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Avatar Chat",
        description="Chat with a talking avatar, grounded in its knowledge base",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Errors ───────────────────────────────────────────────────
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        """`detail` for API clients, `error` for the web frontend."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Avatar Chat (env=%s)", settings.env)

        # Create database tables
        await init_db()

        # Wire services (tests may pre-populate app.state)
        if getattr(app.state, "assistants", None) is None:
            app.state.assistants = AssistantsClient()
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(
                ChatStore(get_session_factory()),
                build_renderer(),
                app.state.assistants,
            )

        services: ChatServices = app.state.services
        logger.info("Renderer: %s", services.renderer.name)

        # Fail turns orphaned by a previous process
        scheduler = services.scheduler
        try:
            await services.store.fail_stale_videos(
                timedelta(seconds=scheduler.delay + scheduler.max_wait + STALE_GRACE_SECONDS)
            )
        except StoreError as e:
            logger.error("Stale video sweep failed: %s", e)

        logger.info("Avatar Chat is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.llm import close_client

        services: ChatServices = app.state.services
        await services.scheduler.shutdown()
        await services.renderer.close()
        await app.state.assistants.close()
        await close_client()
        await close_db()
        await close_redis()
        logger.info("Avatar Chat shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
