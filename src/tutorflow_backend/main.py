'''
TutorFlow API application.
'''
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database.engine import create_db_engine_and_session_factory, dispose_db_engine
from .common.logger import log
from .common.config import settings
from .api import auth, classes, class_exceptions, cancellation_policies

# Web app (local dev servers and production).
DEFAULT_CORS_ORIGINS = [
    "http://localhost",
    "http://localhost:3000",
    "http://localhost:5173",
    "https://tutorflow.app",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Opens the database engine for the lifetime of the app. In TEST_MODE the
    tests provide their own sessions, so no engine is created.
    """
    log.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} (test mode: {settings.TEST_MODE})")
    if not settings.TEST_MODE:
        create_db_engine_and_session_factory()
    try:
        yield
    finally:
        if not settings.TEST_MODE:
            await dispose_db_engine()
        log.info(f"{settings.APP_NAME} stopped.")


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=DEFAULT_CORS_ORIGINS + settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Health"])
async def health_check():
    return {"status": "ok", "message": f"{settings.APP_NAME} is running", "version": settings.APP_VERSION}


for api_module in (auth, classes, class_exceptions, cancellation_policies):
    app.include_router(api_module.router)
