import asyncio
import contextlib
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse
from starlette.datastructures import Headers

# Import the conversion router
from converter.router import router as convert_router

from converter.config import CONVERTER_PAGES, GatewaySettings, get_settings
from converter.strategies import STRATEGY_REGISTRY
from converter.utils.artifact_store import ArtifactStore
from converter.utils.conversion_core import ConversionLifecycle
from converter.utils.conversion_lookup import validate_capability_matrix

# Import centralized error handling
from converter.utils.error_handling import (
    ErrorCode,
    GatewayError,
    create_error_response,
    gateway_error_handler,
    unhandled_error_handler,
)
from converter.utils.external_tools import tool_available

# Import centralized logging configuration
from converter.utils.logging_config import get_logger
from converter.utils.storage import StorageLayout

# Set up logging
logger = get_logger(__name__)

STATIC_DIR = Path(__file__).parent / "converter" / "static"
INDEX_PAGE = STATIC_DIR / "index.html"

# Room for multipart boundaries and form fields on top of the file itself
MULTIPART_OVERHEAD_BYTES = 1024 * 1024


class UploadTooLarge(Exception):
    """Raised from the wrapped receive channel once the body passes the ceiling."""
    pass


class UploadCeilingMiddleware:
    """
    Enforce the upload ceiling on ``POST /convert``.

    A declared Content-Length over the ceiling is refused before the body is
    read. Bodies without one (chunked transfer) are counted as they stream in
    and the request is answered with 413 as soon as the count passes the
    ceiling. Whatever the application tries to send after that is dropped.
    """

    def __init__(self, app, max_upload_bytes: int):
        self.app = app
        self.max_body_bytes = max_upload_bytes + MULTIPART_OVERHEAD_BYTES
        self.message = f"File exceeds the maximum upload size of {max_upload_bytes // (1024 * 1024)} MB"

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or scope["path"] != "/convert":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_body_bytes:
            await self._reject(scope, receive, send)
            return

        received = 0
        exceeded = False
        response_started = False

        async def counting_receive():
            nonlocal received, exceeded
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    exceeded = True
                    raise UploadTooLarge(f"Request body passed {self.max_body_bytes} bytes")
            return message

        async def guarded_send(message):
            nonlocal response_started
            if exceeded:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, counting_receive, guarded_send)
        except Exception as e:
            if not exceeded:
                raise
            logger.debug(f"Upload aborted after {received} bytes: {e!r}")

        if exceeded and not response_started:
            logger.warning(f"Rejected streamed upload over {self.max_body_bytes} bytes")
            await self._reject(scope, receive, send)

    async def _reject(self, scope, receive, send) -> None:
        response = create_error_response(ErrorCode.PAYLOAD_TOO_LARGE, self.message)
        await response(scope, receive, send)


def create_app(settings: Optional[GatewaySettings] = None) -> FastAPI:
    """Build the gateway application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Bootstrap storage, check the capability matrix and run the sweeper."""
        storage = StorageLayout(settings.storage_root)
        storage.bootstrap()
        validate_capability_matrix(STRATEGY_REGISTRY.keys())

        artifacts = ArtifactStore(storage, settings)
        app.state.settings = settings
        app.state.storage = storage
        app.state.artifacts = artifacts
        app.state.lifecycle = ConversionLifecycle(storage, artifacts, settings)
        logger.info(f"Gateway ready: {settings!r}")

        sweeper = asyncio.create_task(artifacts.retention_sweeper())
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(title="File Conversion Gateway", lifespan=lifespan)

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(UploadCeilingMiddleware, max_upload_bytes=settings.max_upload_bytes)

    # Include the conversion router
    app.include_router(convert_router)

    @app.get("/ping")
    async def general_ping():
        return {
            "success": True,
            "data": "PONG!",
            "tools": {
                "ffmpeg": tool_available(settings.ffmpeg_binary),
                "libreoffice": tool_available(settings.soffice_binary),
            },
        }

    async def index_page():
        """Serve the static front-end shell."""
        return FileResponse(INDEX_PAGE, media_type="text/html")

    app.add_api_route("/", index_page, methods=["GET"], include_in_schema=False)
    for slug in CONVERTER_PAGES:
        app.add_api_route(f"/{slug}", index_page, methods=["GET"], include_in_schema=False)

    return app


app = create_app()
