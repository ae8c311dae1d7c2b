"""Wallet row model - one wallet address within a transaction"""
import enum
from dataclasses import dataclass
from typing import Optional

from tokenledger.models.transaction import Transaction


class WalletRole(str, enum.Enum):
    SENDER = "sender"
    RECIPIENT = "recipient"
    MINT_RECIPIENT = "mint-recipient"
    BURN_SENDER = "burn-sender"
    SYSTEM_EVENT = "system-event"


@dataclass(frozen=True)
class WalletRow:
    id: str
    transaction: Transaction
    address: str  # empty for system events
    role: WalletRole
    linked_row_id: Optional[str] = None  # paired sender <-> recipient row
    is_linked: bool = False
