from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from israel_drugs.api.tools import get_registry, router as tools_router
from israel_drugs.config import get_settings

settings = get_settings()
logging.basicConfig(
    level=settings.log_level_value,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Israel Drugs Search API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _startup() -> None:
    registry = get_registry()
    logger.info("Drug registry tools ready: %s", ", ".join(registry.names()))


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(tools_router)
