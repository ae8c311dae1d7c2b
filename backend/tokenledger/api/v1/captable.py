"""Cap-table API endpoints"""
import io
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from tokenledger.api.deps import get_ledger_session
from tokenledger.schemas.captable import CapTableResponse, ExportFormat
from tokenledger.services.export import snapshot_to_csv, snapshot_to_json
from tokenledger.services.ledger_session import LedgerSession

router = APIRouter()


@router.get("", response_model=CapTableResponse)
async def get_captable(
    block: Optional[int] = Query(None, ge=0, description="Block number; latest when omitted"),
    session: LedgerSession = Depends(get_ledger_session),
):
    """Get the cap table at a block"""
    snapshot = await session.get_snapshot(block)
    return CapTableResponse.from_snapshot(snapshot)


@router.get("/export")
async def export_captable(
    format: ExportFormat = ExportFormat.CSV,
    block: Optional[int] = Query(None, ge=0),
    session: LedgerSession = Depends(get_ledger_session),
):
    """Export the cap table as CSV or JSON"""
    snapshot = await session.get_snapshot(block)

    if format == ExportFormat.CSV:
        content = snapshot_to_csv(snapshot)
        media_type = "text/csv"
    else:
        content = snapshot_to_json(snapshot)
        media_type = "application/json"

    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type=media_type,
        headers={
            "Content-Disposition": (
                f"attachment; filename=captable_block_{snapshot.as_of_index}.{format.value}"
            )
        },
    )
