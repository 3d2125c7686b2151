"""Async HTTP server exposing the dispatch endpoints.

An external cron (or the in-process one in ``cadence.cron``) calls the
``/dispatch/*`` routes; each call runs one pass of the matching dispatcher
and returns its summary as JSON. Uses aiohttp's AppRunner/TCPSite for
non-blocking start/stop.
"""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cadence.config import settings
from cadence.services import Services
from cadence.tasks.creation import CreateTaskRequest, TaskCreationError

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Dispatch-Secret"

SERVICES_KEY = web.AppKey("services", Services)
SECRET_KEY = web.AppKey("secret", str)


class ReportRunRequest(BaseModel):
    """Optional body of ``POST /dispatch/reports``."""

    model_config = ConfigDict(populate_by_name=True)

    pregenerate: bool = False
    hours_ahead: float = Field(default=0, ge=0, alias="hoursAhead")
    report_ids: list[str] | None = Field(default=None, alias="reportIds")


def _unauthorized(request: web.Request) -> web.Response | None:
    secret = request.app[SECRET_KEY]
    supplied = request.headers.get(SECRET_HEADER, "")
    if not secret or supplied != secret:
        logger.warning("Dispatch rejected: invalid secret (path=%s)", request.path)
        return web.json_response({"error": "unauthorized"}, status=401)
    return None


async def _read_json(request: web.Request) -> Any:
    if not request.can_read_body:
        return {}
    try:
        return await request.json()
    except Exception:
        logger.warning("Ignoring unparseable request body on %s", request.path)
        return {}


def _server_error(exc: Exception) -> web.Response:
    return web.json_response({"success": False, "error": str(exc) or "Unknown error"}, status=500)


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _dispatch_reports(request: web.Request) -> web.Response:
    """POST /dispatch/reports — run (or pre-generate) due reports."""
    if (denied := _unauthorized(request)) is not None:
        return denied
    services = request.app[SERVICES_KEY]
    if not services.generation_configured:
        logger.error("Report dispatch refused: generation webhook not configured")
        return web.json_response(
            {"success": False, "error": "Generation webhook not configured"}, status=500
        )

    payload = await _read_json(request)
    try:
        params = ReportRunRequest.model_validate(payload)
    except ValidationError:
        logger.warning("Invalid report dispatch body, using defaults: %r", payload)
        params = ReportRunRequest()

    try:
        if params.report_ids:
            summary = await services.report_scheduler.run_reports(params.report_ids)
        else:
            summary = await services.report_scheduler.run(
                pregenerate=params.pregenerate, hours_ahead=params.hours_ahead
            )
    except Exception as exc:
        logger.exception("Report dispatch failed")
        return _server_error(exc)
    return web.json_response(summary)


async def _dispatch_tasks(request: web.Request) -> web.Response:
    """POST /dispatch/tasks — run due scheduled tasks."""
    if (denied := _unauthorized(request)) is not None:
        return denied
    try:
        summary = await request.app[SERVICES_KEY].task_processor.run()
    except Exception as exc:
        logger.exception("Task dispatch failed")
        return _server_error(exc)
    return web.json_response(summary)


async def _dispatch_pending(request: web.Request) -> web.Response:
    """POST /dispatch/pending-reports — release pre-generated reports."""
    if (denied := _unauthorized(request)) is not None:
        return denied
    try:
        summary = await request.app[SERVICES_KEY].pending_delivery.run()
    except Exception as exc:
        logger.exception("Pending report delivery failed")
        return _server_error(exc)
    return web.json_response(summary)


async def _create_task(request: web.Request) -> web.Response:
    """POST /tasks — create a scheduled task for ``user_id``."""
    if (denied := _unauthorized(request)) is not None:
        return denied

    payload = await _read_json(request)
    if not isinstance(payload, dict) or not payload.get("user_id"):
        return web.json_response({"success": False, "error": "user_id is required"}, status=400)
    user_id = str(payload.pop("user_id"))

    try:
        task_request = CreateTaskRequest.model_validate(payload)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return web.json_response(
            {"success": False, "error": "Invalid task request", "details": details}, status=400
        )

    try:
        task = await request.app[SERVICES_KEY].task_creator.create(user_id, task_request)
    except TaskCreationError as exc:
        return web.json_response({"success": False, "error": str(exc)}, status=400)
    except Exception as exc:
        logger.exception("Task creation failed for user %s", user_id)
        return _server_error(exc)
    return web.json_response({"success": True, "task": task.to_dict()})


def create_app(services: Services, secret: str | None = None) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[SERVICES_KEY] = services
    app[SECRET_KEY] = secret if secret is not None else settings.dispatch_secret
    app.router.add_get("/health", _health)
    app.router.add_post("/dispatch/reports", _dispatch_reports)
    app.router.add_post("/dispatch/tasks", _dispatch_tasks)
    app.router.add_post("/dispatch/pending-reports", _dispatch_pending)
    app.router.add_post("/tasks", _create_task)
    return app


class DispatchServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        services: Services,
        host: str | None = None,
        port: int | None = None,
        secret: str | None = None,
    ) -> None:
        self._services = services
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._secret = secret if secret is not None else settings.dispatch_secret
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening. Raises RuntimeError when no dispatch secret is set."""
        if not self._secret:
            msg = "DISPATCH_SECRET is empty; refusing to start the dispatch server"
            raise RuntimeError(msg)

        app = create_app(self._services, self._secret)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Dispatch server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Dispatch server stopped")
