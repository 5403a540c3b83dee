from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
import logging
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.api.router import api_router
from app.db.async_session import get_async_db_manager, startup_async_database, shutdown_async_database
from app.services.plan_generator import LangChainTextGenerator
from app.services.plan_orchestrator import PlanGenerationOrchestrator

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.PROJECT_DESCRIPTION,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    redirect_slashes=False,
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.PROJECT_DESCRIPTION,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "OAuth2PasswordBearer": {
            "type": "oauth2",
            "flows": {
                "password": {
                    "tokenUrl": f"{settings.API_V1_PREFIX}/auth/token",
                    "scopes": {}
                }
            }
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.on_event("startup")
async def startup_event():
    """Initialize the database and the plan orchestrator, then repair stale generations."""
    try:
        logger.info(f"Starting up {settings.PROJECT_NAME}...")

        await startup_async_database()
        logger.info("Async database initialized successfully")

        manager = await get_async_db_manager()
        orchestrator = PlanGenerationOrchestrator(manager.session_factory, LangChainTextGenerator())
        app.state.plan_orchestrator = orchestrator
        logger.info("Plan generation orchestrator initialized")

        try:
            repaired = await orchestrator.repair_stale_generations()
            if repaired:
                logger.warning(f"Reset {repaired} stale plan generation(s)")
        except SQLAlchemyError as e:
            logger.error(f"Stale plan generation repair failed, continuing startup: {e}")

        logger.info(f"{settings.PROJECT_NAME} startup completed successfully")

    except Exception as e:
        logger.error(f"Failed to start up application: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background workers and close database connections."""
    try:
        logger.info(f"Shutting down {settings.PROJECT_NAME}...")

        orchestrator = getattr(app.state, "plan_orchestrator", None)
        if orchestrator is not None:
            await orchestrator.shutdown()

        await shutdown_async_database()
        logger.info("Async database connections closed")

        logger.info(f"{settings.PROJECT_NAME} shutdown completed successfully")

    except Exception as e:
        logger.error(f"Error during application shutdown: {e}")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
