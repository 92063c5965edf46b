"""
FastAPI application entry point
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from klamai.core.config import settings
from klamai.api.v1.api import api_router
from klamai.core.logger import logger
from klamai.db.database import SessionLocal, init_db
from klamai.middleware.correlation import CorrelationMiddleware
from klamai.services.case_queue import case_queue
from klamai.services.specialty_resolver import ensure_fallback_specialty

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api/v1")

# ── Correlation ID middleware (must be added before CORS) ─────────────────────
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)


@app.get("/")
def read_root():
    logger.info("Root endpoint accessed")
    return {"message": "KlamAI API is running", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.on_event("startup")
async def startup_event():
    init_db()

    # Unknown specialties resolve to the fallback row; refuse to start without it.
    db = SessionLocal()
    try:
        fallback_id = ensure_fallback_specialty(db, seed=settings.SEED_FALLBACK_SPECIALTY)
        logger.info("Fallback specialty %r has id %s", settings.FALLBACK_SPECIALTY_NAME, fallback_id)
    finally:
        db.close()

    case_queue.start()
    app.state.case_queue = case_queue


@app.on_event("shutdown")
async def shutdown_event():
    await case_queue.stop()
