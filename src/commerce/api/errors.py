"""HTTP mapping for commerce exceptions, layered over Protean's defaults."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from commerce.errors import ConflictError, DownloadDenied, StateError
from commerce.gateway.port import GatewayError


async def _conflict(request: Request, exc: ConflictError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=409, content={"error": str(exc)})


async def _state(request: Request, exc: StateError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=409, content={"error": str(exc)})


async def _download_denied(request: Request, exc: DownloadDenied) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=403, content={"error": str(exc), "reason": exc.reason})


async def _gateway(request: Request, exc: GatewayError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(
        status_code=502,
        content={"error": exc.message, "outcome_known": exc.definitive},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install Protean's handlers, then the commerce-specific ones.

    Starlette resolves handlers along the exception's MRO, so the subclasses
    registered here win over Protean's ``InvalidOperationError`` mapping.
    """
    register_exception_handlers(app)
    app.add_exception_handler(ConflictError, _conflict)
    app.add_exception_handler(StateError, _state)
    app.add_exception_handler(DownloadDenied, _download_denied)
    app.add_exception_handler(GatewayError, _gateway)
