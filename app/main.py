from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
import sys
import time
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add the app directory to Python path (modules import as services.*, models.*)
app_dir = Path(__file__).parent
if str(app_dir) not in sys.path:
    sys.path.insert(0, str(app_dir))

from config import settings  # noqa: E402
from services.cache_store import cache_store  # noqa: E402
from services.exceptions import DependencyUnavailableError  # noqa: E402
from services.registry_scraper import registry_scraper  # noqa: E402

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await cache_store.connect()
    except DependencyUnavailableError:
        if settings.cache_required:
            logger.error("Redis is required but unreachable, aborting startup")
            raise
        logger.warning("Starting without Redis - cache operations are no-ops")

    logger.info(f"Bemufix backend started ({os.getenv('ENVIRONMENT', 'development')})")
    yield

    logger.info("Shutting down...")
    await registry_scraper.shutdown()
    await cache_store.disconnect()


app = FastAPI(
    title="Bemufix API",
    description="Vehicle lookup, BMW maintenance intelligence and chat for a BMW workshop",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

routers_loaded = []

try:
    from api.vehicles import router as vehicles_router
    app.include_router(vehicles_router, prefix="/api/vehicle", tags=["Vehicles"])
    routers_loaded.append("vehicles")
except Exception as e:
    logger.warning(f"Failed to load vehicles router: {e}")

try:
    from api.chat import router as chat_router
    app.include_router(chat_router, prefix="/api/v2/chat", tags=["Chat"])
    routers_loaded.append("chat")
except Exception as e:
    logger.warning(f"Failed to load chat router: {e}")

logger.info(f"Routers loaded: {routers_loaded}")


@app.get("/")
async def root():
    return {
        "service": "Bemufix API",
        "status": "online",
        "version": settings.app_version,
        "routers_loaded": routers_loaded,
    }


@app.get("/health")
async def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 1),
        "version": settings.app_version,
        "cache": await cache_store.health_check(),
        "routers": len(routers_loaded),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
