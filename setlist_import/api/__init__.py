"""Import API layer: routes, schemas, WebSocket and middleware."""

from setlist_import.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from setlist_import.api.routes import router
from setlist_import.api.schemas import (
    ActiveImportsResponse,
    BatchImportRequest,
    BatchImportResponse,
    ErrorResponse,
    HealthResponse,
    ImportRequest,
    ImportStartedResponse,
    ImportStatusResponse,
    OptimizerStatsResponse,
)
from setlist_import.api.websocket import websocket_progress

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "websocket_progress",
    "ActiveImportsResponse",
    "BatchImportRequest",
    "BatchImportResponse",
    "ErrorResponse",
    "HealthResponse",
    "ImportRequest",
    "ImportStartedResponse",
    "ImportStatusResponse",
    "OptimizerStatsResponse",
]
