from contextlib import asynccontextmanager
import logging

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config
from app.routers import address
from app.services.geocoding import build_provider

# Configure logging to show in Docker logs
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Address Autocomplete API v0.1.0")
    pipeline_config = config.load_pipeline_config()
    async with httpx.AsyncClient(timeout=pipeline_config.request_timeout_s) as client:
        app.state.pipeline_config = pipeline_config
        app.state.geocoding_provider = build_provider(client)
        yield
    logger.info("Address Autocomplete API stopped")


app = FastAPI(title="Address Autocomplete", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(address.router)


@app.get("/health")
def health():
    return {"status": "ok"}
