"""FastAPI application receiving Bitbucket pull-request webhooks.

Provides:
    POST /?token=<secret>   - accept a ``pullrequest:fulfilled`` event

The handler authenticates the shared secret, answers other event types
(``X-Event-Key``) without reading the body, validates the payload and
enqueues it; it never touches git or the Bitbucket API itself.  The event
worker runs as an asyncio background task inside the FastAPI lifespan, so
uvicorn starts and stops both together.

Requests are rejected with 401 when the token does not match, and also
when no token is configured at all.
"""

import asyncio
import contextlib
import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cascade.config import Settings, load_settings
from cascade.events import PullRequestEvent
from cascade.worker import EventWorker

logger = logging.getLogger(__name__)

MERGED_EVENT_KEY = "pullrequest:fulfilled"


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Start the event worker with the server and cancel it on shutdown."""
    worker: EventWorker = app.state.worker
    if not app.state.settings.token:
        logger.warning("No TOKEN configured; every webhook request will be rejected")

    task = asyncio.create_task(worker.run())
    yield

    pending = worker.queue.qsize()
    if pending:
        logger.warning("Shutting down with %d queued event(s) not processed", pending)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    logger.info("Event worker stopped")


def _verify_token(request: Request, token: str | None = Query(default=None)) -> None:
    """Reject the request unless *token* matches the configured secret."""
    expected = request.app.state.settings.token
    if not expected or not token or not secrets.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="invalid token")


def create_app(settings: Settings | None = None, worker: EventWorker | None = None) -> FastAPI:
    """Create and configure the FastAPI app.

    When *settings* is ``None`` (e.g. when called by uvicorn as a factory),
    they are loaded from the home directory and environment.
    """
    if settings is None:
        settings = load_settings()

    from cascade.logging_setup import configure_logging
    configure_logging(settings.home, console=True)

    app = FastAPI(title="Cascade Merge", lifespan=_lifespan)
    app.state.settings = settings
    app.state.worker = worker or EventWorker(settings)

    @app.post("/", status_code=202, dependencies=[Depends(_verify_token)])
    async def receive_event(
        request: Request,
        x_event_key: str | None = Header(default=None),
    ):
        # Other Bitbucket events are not pull-request shaped; filter before parsing.
        if x_event_key is not None and x_event_key != MERGED_EVENT_KEY:
            logger.debug("Ignoring %s event", x_event_key)
            return JSONResponse({"queued": False}, status_code=202)

        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="body is not valid JSON")
        try:
            event = PullRequestEvent.model_validate(payload)
        except ValidationError as exc:
            raise RequestValidationError(exc.errors(include_url=False), body=payload)

        await request.app.state.worker.enqueue(event)
        return {"queued": True}

    return app
