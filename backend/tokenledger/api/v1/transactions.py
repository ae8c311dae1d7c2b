"""Transaction history API endpoints"""
import io
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from tokenledger.api.deps import get_ledger_session
from tokenledger.config import get_settings
from tokenledger.models.history import HistoryFilters
from tokenledger.models.transaction import TransactionKind
from tokenledger.schemas.captable import ExportFormat
from tokenledger.schemas.transaction import (
    SortOrder,
    TransactionPageResponse,
    WalletRowPageResponse,
    WalletRowResponse,
)
from tokenledger.services.export import transactions_to_csv, transactions_to_json
from tokenledger.services.ledger_session import LedgerSession

router = APIRouter()
settings = get_settings()


def history_filters(
    address: Optional[str] = Query(None, description="Only transfers from or to this address"),
    start: Optional[datetime] = Query(None, description="Earliest block time (UTC if naive)"),
    end: Optional[datetime] = Query(None, description="Latest block time (UTC if naive)"),
    kinds: Optional[List[TransactionKind]] = Query(None, description="Transaction types to include"),
) -> HistoryFilters:
    return HistoryFilters(
        address=address or None,
        start_date=start,
        end_date=end,
        kinds=frozenset(kinds) if kinds else None,
    )


@router.get("", response_model=TransactionPageResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    order: SortOrder = SortOrder.NEWEST,
    filters: HistoryFilters = Depends(history_filters),
    session: LedgerSession = Depends(get_ledger_session),
):
    """One page of the transaction history"""
    history = session.detached_history()
    result = await history.page(page, page_size, filters, newest_first=order == SortOrder.NEWEST)
    return TransactionPageResponse.from_page(result, page_size)


@router.get("/rows", response_model=WalletRowPageResponse)
async def list_wallet_rows(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    order: SortOrder = SortOrder.NEWEST,
    filters: HistoryFilters = Depends(history_filters),
    session: LedgerSession = Depends(get_ledger_session),
):
    """One page of the transaction history expanded into linked wallet rows"""
    history = session.detached_history()
    result = await history.page(page, page_size, filters, newest_first=order == SortOrder.NEWEST)
    rows = session.link_transfers(result.transactions, filters.address)
    return WalletRowPageResponse(
        rows=[WalletRowResponse.from_row(r) for r in rows],
        page=result.page_number,
        has_more=result.has_more,
    )


@router.get("/export")
async def export_transactions(
    format: ExportFormat = ExportFormat.CSV,
    pages: int = Query(1, ge=1, le=100, description="Number of consecutive pages to export"),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    order: SortOrder = SortOrder.NEWEST,
    filters: HistoryFilters = Depends(history_filters),
    session: LedgerSession = Depends(get_ledger_session),
):
    """Export the first ``pages`` pages of the transaction history"""
    history = session.detached_history()
    result = await history.page(1, page_size, filters, newest_first=order == SortOrder.NEWEST)
    for _ in range(pages - 1):
        if not result.has_more:
            break
        result = await history.load_more()

    if format == ExportFormat.CSV:
        content = transactions_to_csv(history.loaded)
        media_type = "text/csv"
    else:
        content = transactions_to_json(history.loaded)
        media_type = "application/json"

    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename=transactions.{format.value}"},
    )
