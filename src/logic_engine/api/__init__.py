"""Invocation surface: service facade and HTTP server."""

from .service import LogicEngineService, ServiceResponse
from .server import ApiServer

__all__ = ["LogicEngineService", "ServiceResponse", "ApiServer"]
