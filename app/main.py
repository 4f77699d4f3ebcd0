import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.api.v1.attendance.router import router as attendance_router
from app.api.v1.registrations.router import router as registrations_router
from app.api.v1.subjects.router import router as subjects_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="University ERP Backend")

    # CORS: allow the dashboard frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(subjects_router)
    app.include_router(registrations_router)
    app.include_router(attendance_router)

    logger.info("Application configured with %d routes", len(app.routes))
    return app


app = create_app()
