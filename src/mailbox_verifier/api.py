"""FastAPI application factory and HTTP schemas for the mailbox verifier.

This module provides the REST boundary of the verification pipeline:

- ``POST /email-accounts/{account_id}/test`` starts a test and immediately
  returns its id
- ``GET /email-accounts/test-results/{test_id}`` returns the live outcome,
  or 404 once it is unknown or evicted
- ``GET /health`` and ``GET /metrics`` for monitoring
- Authentication via API token in the X-API-Token header

The service object is stored on ``app.state`` by :func:`create_app`; there is
no module-level service instance.

Example:
    Creating and running the API application::

        from mailbox_verifier.core import MailboxVerifierCore
        from mailbox_verifier.api import create_app

        core = MailboxVerifierCore(db_path="/data/mailbox_verifier.db")
        app = create_app(core, api_token="secret-token")

        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from typing import Any, AsyncContextManager, Callable, Dict, Optional
import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from .core import MailboxVerifierCore

logger = logging.getLogger(__name__)

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    If a token has been configured through :func:`create_app` and a request
    provides either a missing or different value, a ``401`` error is raised.
    When no token is configured the dependency is effectively bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


def get_service(request: Request) -> MailboxVerifierCore:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(500, "Service not initialized")
    return service


auth_dependency = Depends(require_token)


class ApiResponse(BaseModel):
    """Envelope shared by every pipeline response."""
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None


def create_app(
    svc: MailboxVerifierCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`mailbox_verifier.core.MailboxVerifierCore`.
    api_token:
        Optional secret used to protect every endpoint except ``/health``.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    api = FastAPI(title="Mailbox Verifier", lifespan=lifespan)
    api.state.service = svc
    api.state.api_token = api_token
    router = APIRouter(prefix="/email-accounts", tags=["email-accounts"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        body = await request.body()
        logger.error(f"Validation error on {request.method} {request.url.path}")
        logger.error(f"Request body: {body.decode('utf-8', errors='replace')}")
        logger.error(f"Validation errors: {exc.errors()}")
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"status": "ok"}

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics(service: MailboxVerifierCore = Depends(get_service)):
        """Expose Prometheus metrics collected by the pipeline."""
        return Response(content=service.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    @router.post("/{account_id}/test", response_model=ApiResponse, response_model_exclude_none=True)
    async def start_test(account_id: int, service: MailboxVerifierCore = Depends(get_service)):
        """Start a verification run and return its test id without waiting."""
        result = await service.handle_command("startTest", {"account_id": account_id})
        if not result.get("ok"):
            raise HTTPException(404, result.get("error") or "Email account not found")
        return ApiResponse(success=True, message="Email test started", data=result["result"].to_public())

    @router.get("/test-results/{test_id}", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_test_result(test_id: str, service: MailboxVerifierCore = Depends(get_service)):
        """Return the current outcome of a verification run."""
        result = await service.handle_command("getTestResult", {"test_id": test_id})
        if not result.get("ok"):
            raise HTTPException(404, "Test result not found or expired")
        return ApiResponse(success=True, message="Test result retrieved", data=result["result"].to_public())

    api.include_router(router)
    return api
