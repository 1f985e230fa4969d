"""HTTP server exposing notifications and acknowledgements to the consumer."""

import hmac
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from aiohttp import web

from repowatch.core.logging import get_logger, new_correlation_id
from repowatch.shared.exceptions import ConfigError, PersistenceError
from repowatch.shared.models import Category, Tab

if TYPE_CHECKING:
    from repowatch.alerts.badge import BadgeState
    from repowatch.alerts.notifications import NotificationService
    from repowatch.alerts.scheduler import PollScheduler

logger = get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

CORRELATION_HEADER = "X-Correlation-ID"


def _badge_payload(badge: "BadgeState") -> dict[str, Any]:
    return {"count": badge.count, "text": badge.text, "color": badge.color}


class NotificationServer:
    """Async HTTP server for the notification consumer.

    Provides endpoints for:
    - GET /health: Health check endpoint
    - GET /notifications: Current notification store
    - GET /badge: Aggregate count as badge text and color
    - DELETE /notifications/{owner}/{repo}/files?path=&branch=: Clear one file
    - DELETE /notifications/{owner}/{repo}/{category}: Clear one category
    - POST /notifications/{owner}/{repo}/tabs/{tab}/clear: Clear a tab
    - PUT /cadence: Change the poll cadence

    Attributes:
        host: Server host address
        port: Server port
        login: GitHub login whose notifications are served
    """

    def __init__(
        self,
        host: str,
        port: int,
        login: str,
        notifications: "NotificationService",
        scheduler: "PollScheduler | None" = None,
        api_token: str = "",
    ) -> None:
        """Initialize notification server.

        Args:
            host: Host address to bind to
            port: Port to listen on
            login: GitHub login whose notifications are served
            notifications: Service performing reads and acknowledgements
            scheduler: Poll scheduler for cadence changes
            api_token: Bearer token required on every request except /health
        """
        self.host = host
        self.port = port
        self.login = login
        self.notifications = notifications
        self.scheduler = scheduler
        self.api_token = api_token
        self.app: web.Application | None = None
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._running = False

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes registered."""
        app = web.Application(
            middlewares=[
                self._correlation_middleware,
                self._auth_middleware,
                self._error_middleware,
            ]
        )
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/notifications", self._handle_get_notifications)
        app.router.add_get("/badge", self._handle_get_badge)
        app.router.add_delete("/notifications/{owner}/{repo}/files", self._handle_clear_file)
        app.router.add_delete(
            "/notifications/{owner}/{repo}/{category}", self._handle_clear_category
        )
        app.router.add_post(
            "/notifications/{owner}/{repo}/tabs/{tab}/clear", self._handle_clear_tab
        )
        app.router.add_put("/cadence", self._handle_set_cadence)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self.app = self.build_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        self._running = True
        logger.info("api.server.started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        self._running = False

        if self.site:
            await self.site.stop()

        if self.runner:
            await self.runner.cleanup()

        logger.info("api.server.stopped")

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    @web.middleware
    async def _correlation_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        correlation_id = new_correlation_id()
        response = await handler(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        if not self.api_token or request.path == "/health":
            return await handler(request)

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        # Compared as bytes: str arguments must be ASCII
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            token.encode(), self.api_token.encode()
        ):
            logger.warning("api.auth.rejected", path=request.path)
            return web.json_response({"error": "Unauthorized"}, status=401)
        return await handler(request)

    @web.middleware
    async def _error_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        try:
            return await handler(request)
        except PersistenceError as e:
            logger.error("api.persistence.failed", path=request.path, error=str(e))
            return web.json_response({"error": "Storage unavailable"}, status=503)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "service": "repowatch"})

    async def _handle_get_notifications(self, request: web.Request) -> web.Response:
        store = await self.notifications.get_notifications(self.login)
        return web.json_response({"login": self.login, "notifications": store})

    async def _handle_get_badge(self, request: web.Request) -> web.Response:
        badge = await self.notifications.get_badge(self.login)
        return web.json_response(_badge_payload(badge))

    async def _handle_clear_category(self, request: web.Request) -> web.Response:
        repo = f"{request.match_info['owner']}/{request.match_info['repo']}"
        try:
            category = Category(request.match_info["category"])
        except ValueError:
            return web.json_response(
                {"error": f"Unknown category: {request.match_info['category']}"}, status=400
            )

        badge = await self.notifications.clear_category(self.login, repo, category)
        return web.json_response(_badge_payload(badge))

    async def _handle_clear_tab(self, request: web.Request) -> web.Response:
        repo = f"{request.match_info['owner']}/{request.match_info['repo']}"
        try:
            tab = Tab(request.match_info["tab"])
        except ValueError:
            return web.json_response(
                {"error": f"Unknown tab: {request.match_info['tab']}"}, status=400
            )

        badge = await self.notifications.clear_tab(self.login, repo, tab)
        return web.json_response(_badge_payload(badge))

    async def _handle_clear_file(self, request: web.Request) -> web.Response:
        repo = f"{request.match_info['owner']}/{request.match_info['repo']}"
        path = request.query.get("path", "")
        branch = request.query.get("branch", "")
        if not path or not branch:
            return web.json_response({"error": "path and branch are required"}, status=400)

        badge = await self.notifications.clear_file_notification(self.login, repo, path, branch)
        return web.json_response(_badge_payload(badge))

    async def _handle_set_cadence(self, request: web.Request) -> web.Response:
        if self.scheduler is None:
            return web.json_response({"error": "Scheduler not running"}, status=503)

        try:
            payload: dict[str, Any] = await request.json()
        except ValueError as e:
            logger.warning("api.cadence.parse_failed", error=str(e))
            return web.json_response({"error": "Invalid JSON"}, status=400)

        minutes = payload.get("minutes") if isinstance(payload, dict) else None
        if not isinstance(minutes, int) or isinstance(minutes, bool):
            return web.json_response({"error": "minutes must be an integer"}, status=400)

        try:
            await self.scheduler.set_cadence(minutes)
        except ConfigError as e:
            return web.json_response({"error": str(e)}, status=400)

        return web.json_response({"period_minutes": minutes})
