import asyncio
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from db.config import engine, SessionLocal
from models.mysql_models import Base
from panel.api_client import close_panel_client
from routes.user_routes import router as user_router
from routes.server_routes import router as server_router
from routes.billing_routes import router as billing_router
from routes.audit_routes import router as audit_router
from scheduler.billing_scheduler import create_scheduler
from scheduler.config import scheduler_config
from services.settings_service import SettingsService

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PanelBilling API",
    description="Prepaid hourly billing for panel-hosted game servers",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

billing_scheduler = create_scheduler()


def init_database():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        SettingsService(session).init_settings()
    finally:
        session.close()


@app.on_event("startup")
async def startup():
    try:
        await asyncio.to_thread(init_database)
    except Exception as e:
        logger.warning(f"Failed to initialize database: {e}")

    if scheduler_config.run_in_api:
        await billing_scheduler.start()
    else:
        logger.info("Billing scheduler disabled in this process")


@app.on_event("shutdown")
async def shutdown():
    await billing_scheduler.stop()
    await close_panel_client()


app.include_router(user_router, prefix="/api/v1")
app.include_router(server_router, prefix="/api/v1")
app.include_router(billing_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")


@app.get("/", tags=["Health"])
def health_check():
    return {"status": "healthy", "service": "panelbilling"}


@app.get("/health", tags=["Health"])
def health():
    return {
        "status": "ok",
        "scheduler_running": billing_scheduler.running
    }
