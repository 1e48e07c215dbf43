"""PMDash FastAPI app: dashboard API over the feature registry, roadmap and TODO scans."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pmdash import config
from pmdash.observability import initialize as initialize_observability, shutdown as shutdown_observability
from pmdash.project_config import ConfigError, load_project_config, state_file_for
from pmdash.routers.features import features_router
from pmdash.routers.roadmap import roadmap_router
from pmdash.routers.todos import todos_router
from pmdash.services.file_watcher import todo_watcher
from pmdash.services.scanner import options_from_settings

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("pmdash")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("PMDash API starting up (root %s)", config.ROOT_PATH)
    initialize_observability(app)

    if config.WATCH_ENABLED:
        try:
            project = load_project_config(config.CONFIG_FILE)
            await todo_watcher.start(
                config.ROOT_PATH,
                state_file_for(config.ROOT_PATH, project),
                options_from_settings(project.scan),
            )
        except (ConfigError, FileNotFoundError) as exc:
            logger.error("Watcher not started: %s", exc)

    yield

    logger.info("PMDash API shutting down")
    await todo_watcher.stop()
    shutdown_observability(app)


app = FastAPI(
    title="PMDash API",
    description="Feature registry, roadmap and TODO tracking for a repository",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(features_router)
app.include_router(roadmap_router)
app.include_router(todos_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "root": str(config.ROOT_PATH),
        "registry": "present" if config.REGISTRY_FILE.exists() else "missing",
        "watcher": "running" if todo_watcher.is_running else "stopped",
    }
