from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from dotenv import load_dotenv

# Load the project-root .env explicitly
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"

if env_path.exists():
    load_dotenv(env_path)

from fastapi import FastAPI

from ingestion.settings import get_settings
from ingestion.utils.logging import configure_logging

from .database import init_db
from .routes import router


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.structlog_level, json_enabled=settings.log_json)
    init_db()
    yield


app = FastAPI(title="Park Release Tracker API", version="0.1.0", lifespan=lifespan)

app.include_router(router)


@app.get("/healthz", tags=["system"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
