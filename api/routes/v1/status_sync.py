"""Status synchronizer routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlmodel import Session

from api.services import StatusSyncService, SweepResult
from seatpool.db.engine import get_session_dependency


router = APIRouter(prefix="/v1/status-sync", tags=["status-sync"])

status_sync_service = StatusSyncService()


@router.post("/run", response_model=SweepResult)
async def run_sweep(
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Run one reconciliation sweep now and report what changed."""
    return status_sync_service.run_sweep(session)
