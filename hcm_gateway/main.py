"""FastAPI application and process entry point for the Oracle HCM MCP gateway."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

from hcm_gateway import __version__
from hcm_gateway.adapters.hcm_client import build_hcm_client, build_http_pool
from hcm_gateway.api.mcp_server import StreamableHTTPEndpoint, build_mcp_server
from hcm_gateway.infra.config import Config, get_config
from hcm_gateway.infra.error_handler import ConfigError
from hcm_gateway.infra.logging import setup_logging
from hcm_gateway.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware
from hcm_gateway.infra.telemetry import setup_telemetry, shutdown_telemetry
from hcm_gateway.infra.tls import build_ssl_context
from hcm_gateway.services.credential_provider import build_credential_provider
from hcm_gateway.services.tool_execution_engine import ToolDispatcher
from hcm_gateway.services.tool_registry import ToolRegistry, get_default_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the dispatch pipeline and MCP sessions on startup; release them on shutdown."""
    config: Config = app.state.config
    http_pool = None

    logger.info("Application starting up", extra={"version": __version__})

    if app.state.dispatcher is None:
        config.validate()
        setup_telemetry(config.OTEL_EXPORTER_OTLP_ENDPOINT)

        ssl_context = build_ssl_context(config.HCM_CA_BUNDLE, config.HCM_CA_BUNDLE_MODE)
        http_pool = build_http_pool(config, ssl_context)
        credential_provider = build_credential_provider(config, http_pool)
        hcm_client = build_hcm_client(config, http_pool, credential_provider)
        app.state.dispatcher = ToolDispatcher(
            registry=app.state.registry,
            credential_provider=credential_provider,
            hcm_client=hcm_client,
            framework_version=config.REST_FRAMEWORK_VERSION,
        )
        logger.info(
            "Dispatch pipeline ready",
            extra={
                "hcm_resources_url": config.hcm_resources_url,
                "auth_mode": config.HCM_AUTH_MODE,
                "tools": len(app.state.registry),
            },
        )

    # A session manager runs once, so each startup gets a fresh one
    session_manager = StreamableHTTPSessionManager(
        app=app.state.mcp_server,
        json_response=config.MCP_JSON_RESPONSE,
        stateless=False,
    )
    app.state.session_manager = session_manager

    try:
        # Leaving run() cancels every session along with its in-flight tool calls
        async with session_manager.run():
            yield
    finally:
        logger.info("Application shutting down")
        app.state.session_manager = None

        if http_pool is not None:
            await http_pool.aclose()
            app.state.dispatcher = None
        shutdown_telemetry()


def create_app(
    config: Optional[Config] = None,
    registry: Optional[ToolRegistry] = None,
    dispatcher: Optional[ToolDispatcher] = None,
) -> FastAPI:
    """
    Create the gateway application.

    Args:
        config: Configuration; read from the environment when omitted
        registry: Tool catalog; the built-in HCM tools when omitted
        dispatcher: Prebuilt dispatcher; built from ``config`` at startup when omitted
    """
    app = FastAPI(
        title="Oracle HCM MCP Gateway",
        description="Exposes Oracle HCM REST endpoints as Model Context Protocol tools.",
        version=__version__,
        lifespan=lifespan,
        tags_metadata=[
            {"name": "Health", "description": "Health check and monitoring endpoints"},
        ],
    )

    app.state.config = config if config is not None else get_config()
    setup_logging(app.state.config.LOG_LEVEL)

    app.state.registry = registry if registry is not None else get_default_registry()
    app.state.dispatcher = dispatcher
    app.state.session_manager = None
    app.state.mcp_server = build_mcp_server(app.state.registry, lambda: app.state.dispatcher)

    # Last added runs first, so request IDs are assigned before logging
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    from hcm_gateway.api.routers import health

    app.add_route("/mcp", StreamableHTTPEndpoint(), methods=["GET", "POST", "DELETE"], include_in_schema=False)
    app.include_router(health.router)

    return app


app = create_app()


def run() -> None:
    """Console entry point: exit 0 on graceful shutdown, 1 on startup failure."""
    config = get_config()

    try:
        config.validate()
        build_ssl_context(config.HCM_CA_BUNDLE, config.HCM_CA_BUNDLE_MODE)
    except ConfigError as e:
        logger.critical("Startup aborted", extra={"error": str(e)})
        sys.exit(1)

    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.HOST,
            port=config.PORT,
            log_level=config.LOG_LEVEL.lower(),
            lifespan="on",
        )
    )
    server.run()

    if not server.started:
        logger.critical("Startup aborted")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    run()
