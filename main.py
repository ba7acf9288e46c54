import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request

from controllers.event_controller import EventGate
from routes.slack_route import router as slack_router
from services.dedup_cache import DedupCache
from services.flow_controller import FlowController
from services.github.commit_engine import AtomicCommitEngine
from services.github.content_client import ContentRepositoryClient
from services.image_optimizer import ImageOptimizer
from services.session_store import SessionStore
from services.slack.notifier import Notifier
from services.slack.slack_client import SlackClient
from utils.database_cleaner import DatabaseCleaner
from utils.database_init import AsyncDatabaseInitializer
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3_600


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    `settings` and `http_client` may be injected (tests pass a client backed by
    `httpx.MockTransport`); otherwise they are built from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the settings (environment, optionally a .env file)
          - the SQLite session database at DATABASE_DIR/sessions.db
          - one shared httpx client for the Slack and GitHub APIs
          - the flow controller and the intake gate
        and attach them to `app.state`.
        """
        resolved = settings or Settings.from_env()
        app.state.settings = resolved

        db_initializer = AsyncDatabaseInitializer(resolved.database_dir)
        await db_initializer.ensure_database()
        app.state.db_initializer = db_initializer

        owns_client = http_client is None
        client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        app.state.http_client = client

        slack = SlackClient(client, resolved.slack_bot_token)
        notifier = Notifier(slack)
        content = ContentRepositoryClient(client, resolved.github_token, resolved.github_owner, resolved.github_repo)
        engine = AtomicCommitEngine(content, resolved.github_branch, resolved.json_path)
        store = SessionStore(db_initializer)
        optimizer = ImageOptimizer(max_size=(resolved.image_max_size, resolved.image_max_size))

        flow = FlowController(store, engine, notifier, slack, optimizer, resolved)
        app.state.session_store = store
        app.state.event_gate = EventGate(DedupCache(resolved.dedup_capacity), flow, notifier)

        cleaner = DatabaseCleaner(db_initializer)
        cleanup_task = asyncio.create_task(cleaner.run_periodic_cleanup(CLEANUP_INTERVAL_SECONDS))

        try:
            yield
        finally:
            cleanup_task.cancel()
            await asyncio.gather(cleanup_task, return_exceptions=True)
            if owns_client:
                await client.aclose()

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that verifies the session database and intake gate are ready.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        has_gate = hasattr(request.app.state, "event_gate")
        return {"ok": True, "db_initialized": has_db, "gate_ready": has_gate}

    # Register application routers
    app.include_router(slack_router)

    return app


app = create_app()
