"""Block lookup API endpoints"""
from fastapi import APIRouter, Depends, Query

from tokenledger.api.deps import get_ledger_session
from tokenledger.models.events import IndexedRecord
from tokenledger.schemas.block_lookup import BlockResponse
from tokenledger.services.ledger_session import LedgerSession

router = APIRouter()


@router.get("/lookup", response_model=BlockResponse)
async def lookup_block(
    timestamp: int = Query(..., ge=0, description="Unix timestamp in seconds"),
    session: LedgerSession = Depends(get_ledger_session),
):
    """Latest block mined at or before a timestamp"""
    record = await session.resolve_index_for_timestamp(timestamp)
    return BlockResponse.from_record(record)


@router.get("/deployment", response_model=BlockResponse)
async def get_deployment_block(session: LedgerSession = Depends(get_ledger_session)):
    """Block in which the token contract was deployed"""
    index = await session.get_deployment_index()
    timestamp = await session.resolver.timestamp_at(index)
    return BlockResponse.from_record(IndexedRecord(index=index, timestamp=timestamp))
