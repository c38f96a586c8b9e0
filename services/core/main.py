import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import Services, build_services
from api.endpoints.submissions import router as submissions_router
from api.endpoints.goals import router as goals_router
from api.endpoints.summaries import router as summaries_router
from api.endpoints.plans import router as plans_router
from api.endpoints.agent import router as agent_router
from logging_config import get_logger

logger = get_logger(__name__)

# SECURITY: Limit CORS to specific origins
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")


def create_app(services: Services | None = None) -> FastAPI:
    """
    services=None: the default stack (database.AsyncSessionLocal + edge
    function client) is built at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "services", None) is None:
            from database import AsyncSessionLocal, close_db_connections, create_tables
            from collaborators import EdgeFunctionClient
            from lifecycle_config import CREATE_TABLES_ON_STARTUP

            if CREATE_TABLES_ON_STARTUP:
                await create_tables()
            owned = build_services(AsyncSessionLocal, EdgeFunctionClient())
            app.state.services = owned
            logger.info("services_started")
        yield
        await app.state.services.single_flight.drain()
        await app.state.services.side_channels.drain()
        if owned is not None:
            await owned.collaborators.aclose()
            await close_db_connections()
            logger.info("services_stopped")

    app = FastAPI(title="Coaching lifecycle core", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )

    app.include_router(submissions_router)
    app.include_router(goals_router)
    app.include_router(summaries_router)
    app.include_router(plans_router)
    app.include_router(agent_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
