"""
JSON-over-HTTP surface for the diagnostic probes.

Every probe is a POST endpoint taking a JSON body. Error responses always
carry a ``{"message": ...}`` body; the status comes from the exception class
(400 validation, 404 no RDAP service, 500 otherwise).
"""

from typing import Awaitable, Callable, Optional

from aiohttp import web

from . import __version__
from .config import SystemConfig, create_default_config
from .enums import ValidationErrorCode
from .exceptions import ProbeError, UpstreamError, ValidationError
from .orchestrator import ProbeOrchestrator
from .probe_logger import ProbeLogger

COMPONENT = "HTTPServer"

DIAGNOSTICS_PREFIX = "/api/internal/diagnostics"

ORCHESTRATOR_KEY = web.AppKey("orchestrator", ProbeOrchestrator)
LOGGER_KEY = web.AppKey("logger", ProbeLogger)

# path -> orchestrator method
PROBE_ROUTES = {
    "dns-performance": "handle_dns_performance",
    "mail-tls": "handle_mail_tls",
    "greylist": "handle_greylist",
    "rdap": "handle_rdap",
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(status: int, message: str) -> web.Response:
    return web.json_response({"message": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn every failure into a ``{message}`` JSON response."""
    logger = request.app.get(LOGGER_KEY)
    try:
        return await handler(request)
    except web.HTTPException as e:
        if e.status < 400:
            raise
        return _error_response(e.status, e.reason)
    except UpstreamError as e:
        if logger:
            logger.warn(
                COMPONENT,
                "RDAP upstream failure",
                {"path": request.path, "code": e.code, "upstream_status": e.upstream_status},
            )
        return _error_response(e.http_status, f"RDAP lookup failed: {e.message}")
    except ProbeError as e:
        if logger:
            logger.debug(
                COMPONENT,
                f"Request rejected: {e.message}",
                {"path": request.path, "code": e.code, "status": e.http_status},
            )
        return _error_response(e.http_status, e.message)
    except Exception as e:
        if logger:
            logger.log_error(
                COMPONENT,
                "Unhandled error while serving request",
                error=e,
                request_path=request.path,
            )
        return _error_response(500, str(e) or "Internal server error")


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except ValueError:
        raise ValidationError(
            code=ValidationErrorCode.INVALID_BODY.value,
            message="Invalid JSON in request body",
        )


def _probe_handler(method_name: str) -> Handler:
    async def handler(request: web.Request) -> web.Response:
        body = await _read_json(request)
        orchestrator = request.app[ORCHESTRATOR_KEY]
        result = await getattr(orchestrator, method_name)(body)
        return web.json_response(result)

    handler.__name__ = method_name
    return handler


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__})


def create_app(
    config: Optional[SystemConfig] = None,
    orchestrator: Optional[ProbeOrchestrator] = None,
    logger: Optional[ProbeLogger] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        config: System configuration used when no orchestrator is given
        orchestrator: Optional preconfigured orchestrator
        logger: Optional probe logger for request errors

    Returns:
        Application serving the probe routes and the health check
    """
    config = config or create_default_config()
    orchestrator = orchestrator or ProbeOrchestrator(config, logger=logger)

    app = web.Application(middlewares=[error_middleware])
    app[ORCHESTRATOR_KEY] = orchestrator
    if logger:
        app[LOGGER_KEY] = logger

    for path, method_name in PROBE_ROUTES.items():
        app.router.add_post(f"{DIAGNOSTICS_PREFIX}/{path}", _probe_handler(method_name))
    app.router.add_get("/api/health", health)

    return app


def run_server(config: SystemConfig, logger: Optional[ProbeLogger] = None) -> None:
    """Serve until interrupted."""
    app = create_app(config, logger=logger)
    if logger:
        logger.info(
            COMPONENT,
            f"Listening on http://{config.server.host}:{config.server.port}",
            {"version": __version__},
        )
    web.run_app(app, host=config.server.host, port=config.server.port, print=None)
