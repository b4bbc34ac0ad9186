"""REST API routes."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from logistics.api.runs import RunController
from logistics_core.errors import InvariantViolation

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/response models
class RunRequest(BaseModel):
    """Start an invoice run."""

    spreadsheet_path: str
    test_level: Optional[int] = Field(None, ge=1)
    batch_label: Optional[str] = None
    confirm_mismatch: bool = False  # proceed when batch_label does not match the clock


class SalesInputRequest(BaseModel):
    batch_label: Optional[str] = None


class StepResponse(BaseModel):
    index: int
    code: str
    name: str
    sort_order: int


class BatchResponse(BaseModel):
    current: str
    labels: list[str]
    table: dict[str, str]


class BatchValidationResponse(BaseModel):
    claimed: str
    current: str
    matches: bool
    known: bool
    explanation: str


class RunStatus(BaseModel):
    state: str
    started_at: Optional[datetime] = None
    current_step: int
    target_steps: int
    step_name: Optional[str] = None
    progress: float
    elapsed: float
    last_result: Optional[dict] = None


def get_controller(request: Request) -> RunController:
    return request.app.state.run_controller


@router.get("/batch", response_model=BatchResponse)
async def get_batch(request: Request):
    """Current batch and the batch table."""
    classifier = get_controller(request).processor.classifier
    return BatchResponse(
        current=classifier.classify_now(),
        labels=classifier.labels,
        table=classifier.describe(),
    )


@router.get("/batch/validate", response_model=BatchValidationResponse)
async def validate_batch(
    request: Request,
    label: str = Query(..., description="Declared batch label, e.g. 2차"),
):
    """Check a declared batch against the current time."""
    validation = get_controller(request).processor.classifier.validate(label)
    return BatchValidationResponse(
        claimed=validation.claimed,
        current=validation.current_label,
        matches=validation.matches,
        known=validation.known,
        explanation=validation.explanation,
    )


@router.get("/steps", response_model=list[StepResponse])
async def get_steps(request: Request):
    """Enabled processing steps in run order."""
    steps = await get_controller(request).processor.list_steps()
    return [
        StepResponse(index=s.index, code=s.code, name=s.name, sort_order=s.sort_order)
        for s in steps
    ]


@router.get("/runs/current", response_model=RunStatus)
async def get_current_run(request: Request):
    """Tracker snapshot plus the result of the last finished run."""
    controller = get_controller(request)
    snap = controller.processor.tracker.snapshot()
    return RunStatus(
        state=snap.state.value,
        started_at=snap.started_at,
        current_step=snap.current_step,
        target_steps=snap.target_steps,
        step_name=snap.step_name,
        progress=round(snap.progress, 4),
        elapsed=round(snap.elapsed, 3),
        last_result=controller.last_result.to_dict() if controller.last_result else None,
    )


@router.post("/runs", status_code=202)
async def start_run(request: Request, body: RunRequest):
    """Start an invoice run in the background."""
    controller = get_controller(request)
    try:
        controller.start_run(
            spreadsheet_path=body.spreadsheet_path,
            test_level=body.test_level,
            batch_label=body.batch_label,
            confirm_mismatch=body.confirm_mismatch,
        )
    except InvariantViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Run requested for {body.spreadsheet_path}")
    return {"status": "started"}


@router.post("/runs/sales-input", status_code=202)
async def start_sales_input(request: Request, body: SalesInputRequest | None = None):
    """Start the sales input sub-pipeline in the background."""
    controller = get_controller(request)
    try:
        controller.start_sales_input(batch_label=body.batch_label if body else None)
    except InvariantViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "started"}


@router.post("/runs/cancel")
async def cancel_run(request: Request):
    """Abort the current run before its next step."""
    if not get_controller(request).cancel():
        raise HTTPException(status_code=404, detail="No run in progress")
    return {"status": "cancelling"}
