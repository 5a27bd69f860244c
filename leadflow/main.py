"""
LeadFlow - lead management with webhook automation

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from leadflow.config import settings
from leadflow.logging_config import configure_logging, get_logger
from leadflow.sentry_config import configure_sentry
from leadflow.middleware.logging import LoggingMiddleware
from leadflow.routes.metrics import router as metrics_router

# Import route modules
from leadflow.routes.leads import router as leads_router
from leadflow.routes.automation_events import router as automation_events_router
from leadflow.routes.settings import router as settings_router
from leadflow.routes.users import router as users_router

from leadflow.dispatcher import AutomationEventDispatcher

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

log = get_logger(component="app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the automation event dispatcher for the lifetime of the process."""
    dispatcher = None
    if settings.AUTOMATION_DISPATCHER_ENABLED:
        dispatcher = AutomationEventDispatcher()
        dispatcher.start()
    else:
        log.info("automation_dispatcher_disabled")
    app.state.dispatcher = dispatcher
    
    yield
    
    if dispatcher is not None:
        await dispatcher.stop()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Lead management with webhook automation for lead lifecycle events",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Add CORS middleware to allow frontend to send cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include API routes
app.include_router(leads_router)
app.include_router(automation_events_router)
app.include_router(settings_router)
app.include_router(users_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    dispatcher = getattr(app.state, "dispatcher", None)
    return {
        "status": "healthy",
        "dispatcher": "running" if dispatcher is not None and dispatcher.is_running else "stopped"
    }
