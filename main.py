import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

import config
from api.routes import router
from api.schemas import ErrorResponse
from services.exceptions import AttendanceError

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
logger = logging.getLogger(__name__)

# HTTP status per core error kind
ERROR_STATUS_CODES = {
    "validation": 400,
    "not_found": 404,
    "duplicate_identity": 409,
    "storage_io": 500,
    "ingestion": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan events for startup and shutdown.

    Startup:
        - Create tables if not exist
        - Build the attendance service (checks the recognition setup)
        - Import the migration CSV if one is present

    Shutdown:
        - Close database connection
    """
    logger.info("🚀 Starting Face Attendance API...")

    # === STARTUP ===
    from database.connection import init_database, close_database
    await init_database()

    # Fails here when recognition is enabled without a feature extractor
    from services.attendance_service import get_attendance_service
    service = get_attendance_service()
    logger.info("Matching with %s comparator, threshold %.2f",
                getattr(service.comparator, "mode", type(service.comparator).__name__), service.threshold)

    try:
        from services.migration import get_migration_service
        report = await get_migration_service().run_startup_migration()
        if report is not None:
            logger.info("Migration completed: %d imported, %d skipped", report.created, report.skipped)
    except Exception as e:
        logger.error("⚠️ Startup migration failed: %s", e)

    logger.info("✅ Face Attendance API ready!")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🔌 Shutting down...")
    await close_database()


# Create FastAPI app with lifespan
app = FastAPI(
    title="Face Attendance API",
    description="""
    Face Recognition Attendance System API

    Features:
    - Student registration with face images
    - One attendance record per student per day
    - Migration import from the previous backend
    """,
    version=config.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    """Map core errors to JSON error responses"""
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(**exc.to_dict()).model_dump()
    )


# Include API routes
app.include_router(router, prefix="/api", tags=["Attendance"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Face Attendance API",
        "version": config.APP_VERSION,
        "docs": "/docs",
        "health": "/api/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=True
    )
