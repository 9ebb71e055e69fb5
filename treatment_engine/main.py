from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from .config import settings
from .database import engine, Base
from .routers import calc, catalog

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("treatment_engine")

# Create catalog tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.APP_NAME,
    description="Window treatment pricing and bill-of-materials calculation",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(calc.router, prefix="/api")
app.include_router(catalog.router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok", "app": "treatment-engine", "currency": settings.CURRENCY}


@app.on_event("startup")
def auto_seed():
    """Seed the demo catalog on first run when SEED_ON_STARTUP is set."""
    if not settings.SEED_ON_STARTUP:
        return
    from .database import SessionLocal
    from .catalog_seed import seed_catalog
    db = SessionLocal()
    try:
        counts = seed_catalog(db)
        logger.info(f"Startup seed complete: {counts}")
    finally:
        db.close()
