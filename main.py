# main.py
import os

from config.logging_config import configure_logging

configure_logging()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.intel_routes import router as intel_router
from routers.cron_routes import router as cron_router
from routers.alert_routes import router as alert_router


app = FastAPI(title="Market Intel Backend")

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(intel_router, prefix="/api/intel")
app.include_router(cron_router, prefix="/api/cron")
app.include_router(alert_router, prefix="/api/admin/alerts")


@app.get("/health")
def health():
    return {"status": "ok"}


# db startup
from database import Base, engine
import models  # noqa: F401  registers analysis_jobs / analysis_cache / data_alerts

if os.getenv("DB_CREATE_ALL", "1") == "1":
    Base.metadata.create_all(bind=engine)
