"""Block lookup schemas"""
from datetime import datetime, timezone

from pydantic import BaseModel

from tokenledger.models.events import IndexedRecord


class BlockResponse(BaseModel):
    """A block number with its timestamp"""
    block_number: int
    timestamp: int
    block_time: datetime

    @classmethod
    def from_record(cls, record: IndexedRecord) -> "BlockResponse":
        return cls(
            block_number=record.index,
            timestamp=record.timestamp,
            block_time=datetime.fromtimestamp(record.timestamp, tz=timezone.utc),
        )
