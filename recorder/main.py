"""Dialogue Recorder FastAPI app: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recorder import config
from recorder.classifier import LineClassifier
from recorder.classifier_rules import load_classifier_rules
from recorder.db import connection
from recorder.errors import StoreUnavailable
from recorder.listener import DialogueListener
from recorder.observability import initialize as initialize_observability, shutdown as shutdown_observability
from recorder.routers.api import export_router, records_router, search_router, sessions_router
from recorder.watcher import OutputWatcher

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("recorder")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Dialogue recorder starting up")
    initialize_observability(app)

    # A store failure at startup is logged; ingestion retries the connect lazily.
    try:
        await connection.get_connection()
    except StoreUnavailable as e:
        logger.error(f"Record store unavailable at startup: {e}")

    # One listener per process run, hence one session id per run.
    classifier = LineClassifier(load_classifier_rules(config.RULES_PATH))
    listener = DialogueListener(classifier=classifier)
    app.state.listener = listener
    logger.info(f"Listening as session {listener.session_id}")

    watcher = OutputWatcher(listener, config.WATCH_PATHS)
    app.state.watcher = watcher
    await watcher.start()

    yield

    logger.info("Dialogue recorder shutting down")
    await watcher.stop()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="Dialogue Recorder API",
    description="Records, searches and groups dialogue observed in a development session",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(records_router)
app.include_router(search_router)
app.include_router(sessions_router)
app.include_router(export_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    watcher = getattr(app.state, "watcher", None)
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "watcher": "running" if watcher and watcher.is_running else "stopped",
    }
