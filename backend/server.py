from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import scenarios, invoices, public, signing

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# In-memory job store; jobs are re-registered on startup
scheduler = AsyncIOScheduler()

from job_runner import run_signature_link_expiry


def _scheduler_enabled() -> bool:
    return not os.environ.get("PYTEST_RUNNING")


def _register_jobs():
    # Hourly, on the hour
    scheduler.add_job(
        run_signature_link_expiry,
        CronTrigger(minute=0),
        id="signature_link_expiry",
        name="Expire Stale Signature Links",
        replace_existing=True
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting QuickBill Sign API")
    await database.connect()

    run_scheduler = _scheduler_enabled()
    if run_scheduler:
        _register_jobs()
        scheduler.start()
        logger.info(f"Scheduler started with jobs: {[job.id for job in scheduler.get_jobs()]}")
    else:
        logger.info("PYTEST_RUNNING set; background job scheduler not started")

    try:
        yield
    finally:
        logger.info("Shutting down QuickBill Sign API")
        if run_scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
        await database.close()


app = FastAPI(
    title="QuickBill Sign API",
    description="Invoice creation and digital signing",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (scenarios, invoices, public, signing):
    app.include_router(module.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "QuickBill Sign",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

def _jsonable_errors(errors):
    """Pydantic error dicts may carry exception objects in `ctx`; keep them serializable."""
    cleaned = []
    for e in errors:
        e = dict(e)
        if "ctx" in e:
            e["ctx"] = {k: str(v) for k, v in e["ctx"].items()}
        e.pop("input", None)
        cleaned.append(e)
    return cleaned


# Validation error handler: request_id lets a client report point at the log line
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    path = request.url.path
    if path.startswith("/api/invoices"):
        logger.warning(
            "Invoice validation failed request_id=%s path=%s errors=%s",
            request_id,
            path,
            [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
        )
    return JSONResponse(
        status_code=422,
        content={"detail": _jsonable_errors(errors), "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
