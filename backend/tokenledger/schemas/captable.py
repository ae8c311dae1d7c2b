"""Cap-table schemas"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from tokenledger.models.snapshot import LedgerSnapshot


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class CapTableEntryResponse(BaseModel):
    address: str
    balance: str  # raw base units, string to keep uint256 precision
    ownership_pct: str  # 6 decimal digits, e.g. "60.000000"


class CapTableResponse(BaseModel):
    block_number: int
    timestamp: datetime
    total_supply: str
    symbol: Optional[str] = None
    decimals: int
    holder_count: int
    holders: List[CapTableEntryResponse]
    rounding_note: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: LedgerSnapshot) -> "CapTableResponse":
        return cls(
            block_number=snapshot.as_of_index,
            timestamp=datetime.fromtimestamp(snapshot.timestamp, tz=timezone.utc),
            total_supply=str(snapshot.total_supply),
            symbol=snapshot.symbol,
            decimals=snapshot.decimals,
            holder_count=snapshot.holder_count,
            holders=[
                CapTableEntryResponse(
                    address=h.address,
                    balance=str(h.balance),
                    ownership_pct=h.ownership_percentage,
                )
                for h in snapshot.holders
            ],
            rounding_note=snapshot.rounding_note,
        )
