"""Exception handlers for the storefront API.

Protean's handlers map validation errors to 400 and missing aggregates to
404. Concurrent modification is reported as 409 so clients can reload and
retry, whether it was caught by a revision check or by the repository's own
version check.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError
from protean.integrations.fastapi import register_exception_handlers

from storefront.exceptions import ConcurrencyConflictError


async def concurrency_conflict_handler(request: Request, exc: ConcurrencyConflictError) -> JSONResponse:  # noqa: ARG001
    return JSONResponse(status_code=409, content={"error": exc.messages})


async def expected_version_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    return await concurrency_conflict_handler(request, ConcurrencyConflictError.from_version_error(exc))


def register_storefront_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(ConcurrencyConflictError, concurrency_conflict_handler)
    app.add_exception_handler(ExpectedVersionError, expected_version_handler)
