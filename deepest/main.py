from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from deepest.api.routes import research
from deepest.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Deepest API up (llm={settings.llm_provider}, search={settings.search_provider})")
    yield
    running = research.registry.active()
    if running:
        logger.info(f"Cancelling {len(running)} running research session(s) on shutdown")
    for session in running:
        research.registry.cancel(session.id)


app = FastAPI(
    title="Deepest",
    description="Iterative web research that writes structured Markdown reports",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "service": "deepest",
        "llm_provider": settings.llm_provider,
        "search_provider": settings.search_provider,
        "active_sessions": len(research.registry.active()),
    }
