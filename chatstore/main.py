import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Path, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatstore import service
from chatstore.body_limit import BodySizeLimitMiddleware
from chatstore.config import Settings, get_settings
from chatstore.errors import (
    ChatStoreError,
    MalformedRecord,
    NotInitialized,
    StorageUnavailable,
    ValidationError,
)
from chatstore.ids import TimeUuidGenerator
from chatstore.logging_utils import RequestLoggingMiddleware, log_append_data, setup_logging
from chatstore.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_append_outcome,
    record_consistency_fallback,
)
from chatstore.pagination import DEFAULT_LIMIT
from chatstore.responses import error_response
from chatstore.schemas import (
    ClusterHealthResponse,
    ErrorResponse,
    HealthResponse,
    MessageItem,
    MessagesListResponse,
    PageInfo,
    PostMessageRequest,
    PostMessageResponse,
    format_created_at,
)
from chatstore.storage import Database

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    NotInitialized: status.HTTP_503_SERVICE_UNAVAILABLE,
    MalformedRecord: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: connect the database handle and create tables
    - Shutdown: close the handle
    """
    db: Database = app.state.db
    db.connect()
    logger.info(f"Connected - DC: {app.state.settings.DATACENTER}, Keyspace: {app.state.settings.KEYSPACE}")
    yield
    logger.info("Shutting down gracefully...")
    db.close()


# =============================================================================
# Dependencies
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_generator(request: Request) -> TimeUuidGenerator:
    return request.app.state.id_generator


# =============================================================================
# Error Handling
# =============================================================================

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ChatStoreError)
    async def store_error_handler(request: Request, exc: ChatStoreError):
        status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
        return error_response(app.state.settings, status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(part) for part in err['loc'] if part not in ('body', 'query', 'path'))}: {err['msg']}"
            for err in exc.errors()
        ]
        return error_response(
            app.state.settings,
            status.HTTP_400_BAD_REQUEST,
            "BAD_REQUEST",
            "Invalid input",
            {"errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return error_response(app.state.settings, exc.status_code, code, message)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return error_response(
            app.state.settings,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL",
            "Internal server error",
        )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        db: Database handle; built from settings.DATABASE_URL when omitted
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Chat Message Store API",
        description="Channel-scoped, append-only message store with idempotent writes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = db or Database(settings.DATABASE_URL, replication_factor=settings.REPLICATION_FACTOR)
    app.state.id_generator = TimeUuidGenerator()

    app.add_middleware(BodySizeLimitMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CORSMiddleware, allow_origins=[settings.CORS_ORIGIN], allow_methods=["*"], allow_headers=["*"])
    register_exception_handlers(app)

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health", response_model=ClusterHealthResponse)
    async def health(db: Database = Depends(get_database)):
        """Report the datacenter and keyspace this instance serves; 503 before the database is connected."""
        if not db.is_connected:
            return error_response(
                settings,
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "SERVICE_UNAVAILABLE",
                "Database not initialized",
            )
        return ClusterHealthResponse(dc=settings.DATACENTER, keyspace=settings.KEYSPACE)

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """
        Liveness check - always returns 200 once the app is running.
        Used by orchestrators to determine if the app needs to be restarted.
        """
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    def health_ready(response: Response, db: Database = Depends(get_database)) -> HealthResponse:
        """
        Readiness check - returns 200 only if the database is connected,
        reachable and its schema is applied. Otherwise returns 503.
        """
        if not db.check_health():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )
        return HealthResponse(status="ready")

    # =========================================================================
    # Message Routes
    # =========================================================================

    @app.post(
        "/api/messages",
        response_model=PostMessageResponse,
        response_model_exclude_none=True,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid input"},
            503: {"model": ErrorResponse, "description": "Storage unavailable"},
        },
    )
    def post_message(
        body: PostMessageRequest,
        request: Request,
        db: Database = Depends(get_database),
        generator: TimeUuidGenerator = Depends(get_generator),
    ) -> PostMessageResponse:
        """
        Append a message to a channel.

        - Optional `client_msg_id` makes the append idempotent per channel:
          the first request wins, later ones return `deduped: true`.
        - Optional `consistency` selects the write consistency level; an
          unknown value falls back to the default and adds a `warning`.
        """
        try:
            result = service.append_message(
                db,
                generator,
                settings,
                channel_id=body.channel_id,
                user_id=body.user_id,
                content=body.content,
                client_key=body.client_msg_id,
                consistency=body.consistency,
            )
        except StorageUnavailable:
            record_append_outcome("unavailable")
            log_append_data(request, channel_id=body.channel_id, result="unavailable")
            raise

        if result.warning:
            record_consistency_fallback("write")

        if isinstance(result, service.Deduplicated):
            record_append_outcome("deduplicated")
            log_append_data(request, channel_id=body.channel_id, dedup=True, result="deduplicated")
            return PostMessageResponse(deduped=True, warning=result.warning)

        record_append_outcome("accepted")
        log_append_data(
            request,
            channel_id=body.channel_id,
            message_id=str(result.message_id),
            result="accepted",
        )
        return PostMessageResponse(
            message_id=str(result.message_id),
            created_at=format_created_at(result.created_at),
            warning=result.warning,
        )

    @app.get(
        "/api/channels/{channel_id}/messages",
        response_model=MessagesListResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid query parameters"},
            503: {"model": ErrorResponse, "description": "Storage unavailable"},
        },
    )
    def get_channel_messages(
        channel_id: Annotated[str, Path(min_length=1, max_length=100)],
        limit: Annotated[int, Query(description="Page size, 1 to 100")] = DEFAULT_LIMIT,
        before: Annotated[Optional[str], Query(description="Only messages older than this id")] = None,
        after: Annotated[Optional[str], Query(description="Only messages newer than this id")] = None,
        consistency: Annotated[Optional[str], Query(description="Read consistency level")] = None,
        db: Database = Depends(get_database),
    ) -> MessagesListResponse:
        """
        List a channel's messages newest first.

        Continue to older messages by passing `page.next_before` as `before`.
        `before` and `after` cannot be combined.
        """
        result = service.list_messages(
            db,
            settings,
            channel_id=channel_id,
            limit=limit,
            before=before,
            after=after,
            consistency=consistency,
        )
        if result.warning:
            record_consistency_fallback("read")

        return MessagesListResponse(
            items=[MessageItem.from_message(m) for m in result.items],
            page=PageInfo(next_before=str(result.next_before) if result.next_before else None),
            warning=result.warning,
        )

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    return app


app = create_app()
