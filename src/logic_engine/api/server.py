"""HTTP server exposing the logic engine test endpoints."""

from typing import Optional

import structlog
from aiohttp import web

from .service import LogicEngineService


logger = structlog.get_logger()


class ApiServer:
    """
    Thin aiohttp layer over ``LogicEngineService``.

    Routes:
    - POST /logic-engine/test  run all rules, or one rule when ruleId is given
    - GET  /logic-engine/test  sample payloads and contexts
    - GET  /health             liveness
    """

    def __init__(
        self,
        service: LogicEngineService,
        host: str = "0.0.0.0",
        port: int = 8080,
    ):
        self.service = service
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_post("/logic-engine/test", self._test_handler)
        app.router.add_get("/logic-engine/test", self._samples_handler)
        return app

    async def start(self) -> None:
        """Start serving."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info("api_server_started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop serving."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("api_server_stopped")

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _test_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError
            return web.json_response({"error": "Request body must be JSON"}, status=400)

        if not isinstance(body, dict):
            return web.json_response({"error": "Request body must be an object"}, status=400)

        response = await self.service.handle_test_request(body)
        return web.json_response(response.to_dict(), status=response.status)

    async def _samples_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.service.sample_payloads())
