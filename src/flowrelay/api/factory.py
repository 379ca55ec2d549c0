"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from flowrelay.config import Settings, get_settings
from flowrelay.domain.delivery import make_delivery_handler
from flowrelay.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import DELIVERY_TASK_PATH
from flowrelay.whatsapp.meta_sender import MetaSender

from .routers import public, worker
from .routes import send, tasks_delivery, webhooks_whatsapp

AppRole = Literal["public", "worker"]


def create_app(
    role: AppRole | None = None,
    *,
    settings: Settings | None = None,
    tasks_client: TasksClient | None = None,
    sender: MetaSender | None = None,
) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.
        settings: Settings override; read from the environment if None.
        tasks_client: Queue producer override (tests pass a recording client).
        sender: Provider client override.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    settings = settings or get_settings()
    sender = sender or MetaSender.from_settings(settings)
    tasks_client = tasks_client or TasksClient(settings.tasks_backend)

    # Inline backend runs delivery in-process, in the same app
    if tasks_client.backend == "inline":
        tasks_client.register_handler(DELIVERY_TASK_PATH, make_delivery_handler(sender))

    app = FastAPI(
        title="Flowrelay",
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.tasks_client = tasks_client
    app.state.sender = sender

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks_whatsapp.router)
    app.include_router(send.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_delivery.router)

    return app
