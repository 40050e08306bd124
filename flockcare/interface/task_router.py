"""HTTP interface of the task service: ledger reads/writes and batch lookups."""

import logging
from datetime import datetime

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import Field

from flockcare.core.config import Constants
from flockcare.core.db_client import DatabaseError
from flockcare.core.errors import (
    BatchNotFoundError,
    CallerError,
    ErrorCode,
    LedgerError,
    StaleInstanceError,
)
from flockcare.domain.base import WireModel
from flockcare.domain.batch import Batch
from flockcare.domain.task import CompletionResult, TaskInstance
from flockcare.services import batch_service, ledger_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])
batch_router = APIRouter(prefix="/batches", tags=["batches"])


class TodosRequest(WireModel):
    batch_id: str = ""
    day_of_age: int


class UpcomingRequest(WireModel):
    batch_id: str = ""
    from_day: int
    to_day: int


class HistoryRequest(WireModel):
    batch_id: str = ""
    limit: int | None = None


class CompleteRequest(WireModel):
    batch_id: str = ""
    instance_id: str = ""
    completed_at: datetime | None = None
    completed_by: str | None = None
    notes: str = Field(default="", description="Opaque payload from the domain completion form")


class UncompleteRequest(WireModel):
    batch_id: str = ""
    instance_id: str = ""


class TaskListResponse(WireModel):
    success: bool = True
    data: list[TaskInstance]


class UpcomingResponse(WireModel):
    success: bool = True
    data: dict[int, list[TaskInstance]]


class BatchResponse(WireModel):
    success: bool = True
    data: Batch


class BatchListResponse(WireModel):
    success: bool = True
    data: list[Batch]


def _error_body(code: str, error: str) -> dict[str, object]:
    return {"success": False, "code": code, "error": error}


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, BatchNotFoundError):
        return Constants.HTTP_NOT_FOUND
    if isinstance(exc, StaleInstanceError):
        return Constants.HTTP_CONFLICT
    if isinstance(exc, CallerError):
        return Constants.HTTP_BAD_REQUEST
    return Constants.HTTP_SERVER_ERROR


async def _handle_ledger_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, LedgerError)  # noqa: S101 - registered for LedgerError only
    status_code = _status_for(exc)
    logger.warning(
        "ledger_request_rejected",
        extra={"path": request.url.path, "code": exc.code, "status_code": status_code, "error": str(exc)},
    )
    return JSONResponse(status_code=status_code, content=_error_body(exc.code, str(exc)))


async def _handle_validation_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)  # noqa: S101 - registered for RequestValidationError only
    fields = ", ".join(".".join(str(part) for part in error["loc"][1:]) for error in exc.errors())
    logger.warning("ledger_request_invalid", extra={"path": request.url.path, "fields": fields})
    return JSONResponse(
        status_code=Constants.HTTP_BAD_REQUEST,
        content=_error_body(ErrorCode.ERR_CALLER, f"Invalid request fields: {fields}"),
    )


async def _handle_database_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("ledger_storage_failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=Constants.HTTP_SERVER_ERROR,
        content=_error_body(ErrorCode.ERR_TRANSIENT, "Ledger storage unavailable"),
    )


def install_error_handlers(app: FastAPI) -> None:
    """Map ledger and validation errors onto the ``{success: false, code, error}`` envelope."""
    app.add_exception_handler(LedgerError, _handle_ledger_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(DatabaseError, _handle_database_error)


@router.post("/todos")
async def get_todos(body: TodosRequest) -> TaskListResponse:
    """Instances due on a day-of-age, with completion state."""
    instances = await ledger_service.get_todos(batch_id=body.batch_id, day_of_age=body.day_of_age)
    return TaskListResponse(data=instances)


@router.post("/upcoming")
async def get_upcoming(body: UpcomingRequest) -> UpcomingResponse:
    """Instances over a day range, grouped by day-of-age."""
    grouped = await ledger_service.get_upcoming(batch_id=body.batch_id, from_day=body.from_day, to_day=body.to_day)
    return UpcomingResponse(data=grouped)


@router.post("/history")
async def get_history(body: HistoryRequest) -> TaskListResponse:
    """Completed instances, newest first."""
    instances = await ledger_service.get_history(batch_id=body.batch_id, limit=body.limit)
    return TaskListResponse(data=instances)


@router.post("/complete")
async def complete_task(body: CompleteRequest) -> CompletionResult:
    """Idempotently mark an instance complete."""
    return await ledger_service.complete(
        batch_id=body.batch_id,
        instance_id=body.instance_id,
        completed_by=body.completed_by,
        completed_at=body.completed_at,
        notes=body.notes,
    )


@router.post("/uncomplete")
async def uncomplete_task(body: UncompleteRequest) -> CompletionResult:
    """Clear a completion."""
    return await ledger_service.uncomplete(batch_id=body.batch_id, instance_id=body.instance_id)


@batch_router.get("/active")
async def list_active_batches() -> BatchListResponse:
    """All active batches."""
    return BatchListResponse(data=await batch_service.list_active_batches())


@batch_router.get("/{batch_id}")
async def get_batch(batch_id: str) -> BatchResponse:
    """A single batch by ID."""
    return BatchResponse(data=await batch_service.get_batch(batch_id=batch_id))
