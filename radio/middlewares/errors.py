"""
Error middleware.

Maps the service error taxonomy to JSON responses; anything unexpected is
logged with its traceback and answered with a generic 500.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from aiohttp import web

from radio.errors import InvariantViolation, RadioError

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except InvariantViolation as exc:
        logger.critical("Invariant violated on %s %s: %s", request.method, request.path, exc.message)
        return web.json_response(error_body("Internal error", exc.code), status=exc.status)
    except RadioError as exc:
        if exc.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc.message)
        return web.json_response(error_body(exc.message, exc.code), status=exc.status)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(error_body("Internal error", "InternalError"), status=500)
