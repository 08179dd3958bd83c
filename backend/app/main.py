from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.database import get_session_local, init_db, close_db
from app.core.exceptions import BuildoraError, ProjectNotFoundError, error_response
from app.core.logging_config import logger
from app.core.middleware import RequestLoggingMiddleware, RequestSizeLimitMiddleware
from app.core.redis_client import RedisClient
from app.api.v1.router import api_router
from app.api.v1.endpoints import health
from app.modules.orchestrator.pipeline_orchestrator import PipelineOrchestrator
from app.services.build_service import BuildPlatformClient
from app.services.conversation_context import ConversationContextAssembler
from app.services.modification_engine import ModificationEngineClient
from app.services.project_repository import ProjectRepository, ConversationRepository
from app.services.project_resolver import ProjectIdentityResolver
from app.services.response_parser import GenerationResponseParser
from app.services.session_cache import SessionCacheService
from app.services.storage_service import ObjectStorageService
from app.services.workspace import WorkspaceManager
from app.utils.claude_client import ClaudeClient
import app.models  # Import models so metadata knows about them


def validate_config() -> None:
    """Log what is missing; the service still starts and degrades per feature"""
    if not settings.ANTHROPIC_API_KEY:
        logger.warning("[Startup] ANTHROPIC_API_KEY is not set - generation will fail")
    if not settings.MODIFIER_API_URL:
        logger.warning("[Startup] MODIFIER_API_URL not set - modifications use full regeneration")
    if not settings.BUILD_API_URL:
        logger.warning("[Startup] BUILD_API_URL not set - builds will fail after generation")
    logger.info("[Startup] Configuration checked")


def build_services(app: FastAPI, redis=None, session_factory=None) -> None:
    """Construct every service once and attach it to app.state"""
    session_factory = session_factory or get_session_local()
    claude = ClaudeClient()

    session_cache = SessionCacheService(redis)
    projects = ProjectRepository(session_factory)
    conversations = ConversationRepository(session_factory)
    context_assembler = ConversationContextAssembler(
        conversations, projects, session_cache, summarizer=claude.summarize
    )

    app.state.session_factory = session_factory
    app.state.session_cache = session_cache
    app.state.projects = projects
    app.state.context_assembler = context_assembler
    app.state.orchestrator = PipelineOrchestrator(
        cache=session_cache,
        projects=projects,
        resolver=ProjectIdentityResolver(projects, session_cache),
        context=context_assembler,
        workspace=WorkspaceManager(),
        generator=claude,
        storage=ObjectStorageService(),
        builder=BuildPlatformClient(),
        modifier=ModificationEngineClient(),
        parser=GenerationResponseParser(),
        summarizer=claude.summarize,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    validate_config()

    await init_db()
    logger.info("[Startup] Database tables ready")

    redis_client = RedisClient()
    redis = await redis_client.connect()
    if redis is None:
        logger.warning("[Startup] Session cache unavailable - running with cache misses only")

    build_services(app, redis=redis)

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await app.state.orchestrator.shutdown()
    await redis_client.disconnect()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Generates and modifies React projects from prompts, then builds and deploys them",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False  # Prevent 307 redirects that break CORS
)

# Add middleware (order matters - last added runs first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


# Exception handlers
@app.exception_handler(BuildoraError)
async def buildora_exception_handler(request: Request, exc: BuildoraError):
    status_code = 404 if isinstance(exc, ProjectNotFoundError) else 500
    logger.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(health.router)
app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )
