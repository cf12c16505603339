"""
Practice Messaging API - Main Entry Point
Client conversations, WhatsApp integration and chat notifications
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

# Import configuration
from practice_messaging.config import settings

# Import API routers
from practice_messaging.api import conversations, notifications, whatsapp as whatsapp_router, websocket as ws_router
from practice_messaging.api.deps import build_notification_service

# Import services
from practice_messaging.services.notification_sink import NotificationSink
from practice_messaging.services.realtime_registry import ChannelRegistry, build_registry
from practice_messaging.services.supabase_client import get_supabase_client
from practice_messaging.services.whatsapp_service import WhatsAppService, get_whatsapp_service

# Initialize logger
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

_UNSET = object()


def create_app(
    supabase=_UNSET,
    whatsapp: WhatsAppService = None,
    registry: ChannelRegistry = None
) -> FastAPI:
    """
    Build the application. Collaborators default to the ones configured from
    the environment; tests pass their own.
    """

    # Lifespan context manager for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan (startup/shutdown)"""
        # Startup
        logger.info("Starting Practice Messaging API...")

        app.state.supabase = get_supabase_client() if supabase is _UNSET else supabase
        app.state.whatsapp = whatsapp or get_whatsapp_service()
        app.state.registry = registry or build_registry()
        app.state.sink = NotificationSink()

        if app.state.supabase is not None:
            notification_service = build_notification_service(app.state.supabase, app.state.whatsapp)
            app.state.sink.set_handler(notification_service.handle_event)
        else:
            logger.warning("⚠️ Database not configured - notifications disabled")

        if not settings.is_whatsapp_configured and whatsapp is None:
            logger.warning("⚠️ WhatsApp not configured - outbound messages and webhook signatures will fail")

        await app.state.registry.start()

        logger.info("Application startup complete")
        yield

        # Shutdown
        await app.state.sink.close()
        await app.state.registry.close()
        logger.info("Application shutdown")

    app = FastAPI(
        title="Practice Messaging API",
        description="""
## Practice Messaging

Client conversations for law firms: realtime chat, WhatsApp Business
integration, read receipts and preference-aware notifications.
""",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(conversations.router)  # Conversations and messages (/conversations/*)
    app.include_router(notifications.router)  # Notifications and preferences (/notifications/*)
    app.include_router(whatsapp_router.router)  # WhatsApp webhook and send (/whatsapp/*)
    app.include_router(ws_router.router)  # Realtime websockets (/ws/*)

    @app.get("/", tags=["health"])
    async def root():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "Practice Messaging API",
            "version": "1.0.0",
            "whatsapp_configured": settings.is_whatsapp_configured,
            "database_configured": getattr(app.state, "supabase", None) is not None,
            "realtime_available": app.state.registry.available if hasattr(app.state, "registry") else False,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        ws_ping_interval=20.0,
        ws_ping_timeout=60.0,
    )
