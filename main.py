import logging

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from eventgate.api.routes import check_in, participant_qr
from eventgate.core.config import settings
from eventgate.core.logging_config import setup_logging
from eventgate.core.logging_middleware import LoggingMiddleware
from eventgate.db.init_db import init_db

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="EventGate check-in")

@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting check-in service: {settings.get_environment_config()}")
    init_db()

app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

app.include_router(check_in.router, prefix="/checkin", tags=["Check-in"])
app.include_router(participant_qr.router, tags=["Participant QR"])
