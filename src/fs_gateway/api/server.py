# src/fs_gateway/api/server.py
"""
FastAPI application for the FreeSWITCH gateway.
Wires the switch connection and the event dispatcher into the application
lifespan, and configures middleware, exception handlers and routes.
"""

import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..esl.connection import SwitchConnection
from ..events.dispatcher import EventDispatcher
from ..utils.config import Config
from ..utils.errors import GatewayError, InvalidParameterError
from ..utils.logger import get_logger
from .responses import failure
from .routes import router as api_router

logger = get_logger(__name__)

def create_app(
    config: Config,
    connection: Optional[SwitchConnection] = None,
    dispatcher: Optional[EventDispatcher] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Loaded gateway configuration
        connection: Connection to use instead of building one from
            ``config.switch``; it is still started and stopped by the lifespan
        dispatcher: Event dispatcher to use instead of a fresh one

    Returns:
        The application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: begin connecting to the switch without waiting for it, so
        the gateway answers (503 on /health) while the switch is down.
        Shutdown: say goodbye to the switch and end event streams.
        """
        logger.info("Starting FreeSWITCH gateway", version=__version__)
        app.state.startup_time = time.time()
        app.state.dispatcher = (
            dispatcher if dispatcher is not None else EventDispatcher(config.events.queue_size)
        )
        app.state.connection = (
            connection if connection is not None
            else SwitchConnection(config.switch, app.state.dispatcher)
        )

        try:
            await app.state.connection.start()
            yield
        finally:
            logger.info("Beginning shutdown sequence")
            try:
                await app.state.connection.stop()
            except Exception as e:
                logger.error("Error stopping switch connection", error=str(e), exc_info=True)
            app.state.dispatcher.close()
            logger.info("Shutdown completed successfully")

    app = FastAPI(
        title="FreeSWITCH Gateway",
        description="HTTP access to the FreeSWITCH command surface over a single event socket connection",
        version=__version__,
        lifespan=lifespan
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Callable) -> Response:
        """Log requests and responses with timing."""
        start_time = time.time()
        request_id = str(int(start_time * 1000))

        logger.debug("Request received",
                     request_id=request_id,
                     method=request.method,
                     path=request.url.path,
                     client_ip=request.client.host if request.client else None)

        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.debug("Response sent",
                     request_id=request_id,
                     status_code=response.status_code,
                     process_time_ms=f"{process_time:.2f}")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.2f}ms"
        return response

    app.include_router(api_router)

    @app.exception_handler(InvalidParameterError)
    async def invalid_parameter_handler(request: Request, exc: InvalidParameterError):
        logger.warning("Invalid request parameter",
                       error=str(exc),
                       method=request.method,
                       path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=failure(str(exc), exc.code)
        )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        """Switch and connection errors answer 500 with the error message."""
        logger.error("Request failed",
                     error=str(exc),
                     code=exc.code,
                     method=request.method,
                     path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=failure(str(exc), exc.code)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error",
                       errors=exc.errors(),
                       method=request.method,
                       path=request.url.path)
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg')}" if location else "Invalid request"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=failure(message, InvalidParameterError.code)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception",
                     error=str(exc),
                     method=request.method,
                     path=request.url.path,
                     exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=failure("Internal server error")
        )

    return app

def run(config: Config) -> None:
    """
    Run the gateway with uvicorn until interrupted.

    Args:
        config: Loaded gateway configuration
    """
    app = create_app(config)
    logger.info(f"Starting server on {config.api.host}:{config.api.port}")
    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.level.lower(),
        log_config=None
    )
