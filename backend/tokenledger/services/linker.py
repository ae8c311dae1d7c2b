"""Relationship linker: expand transactions into per-wallet rows"""
from typing import Iterable, List, Optional

from tokenledger.models.transaction import Transaction, TransactionKind
from tokenledger.models.wallet_row import WalletRole, WalletRow


def _matches(address: Optional[str], filter_address: Optional[str]) -> bool:
    if not filter_address or not address:
        return True
    return address.lower() == filter_address.lower()


def _transfer_rows(tx: Transaction, filter_address: Optional[str]) -> List[WalletRow]:
    sender, recipient = tx.from_address, tx.to_address

    if sender and recipient:
        sender_id = f"{tx.id}-sender"
        recipient_id = f"{tx.id}-recipient"
        rows = []
        # Recipient first, then sender
        if _matches(recipient, filter_address):
            rows.append(WalletRow(
                id=recipient_id,
                transaction=tx,
                address=recipient,
                role=WalletRole.RECIPIENT,
                linked_row_id=sender_id,
                is_linked=True,
            ))
        if _matches(sender, filter_address):
            rows.append(WalletRow(
                id=sender_id,
                transaction=tx,
                address=sender,
                role=WalletRole.SENDER,
                linked_row_id=recipient_id,
                is_linked=True,
            ))
        return rows

    # Only one endpoint known
    if recipient and _matches(recipient, filter_address):
        return [WalletRow(id=f"{tx.id}-recipient", transaction=tx, address=recipient, role=WalletRole.RECIPIENT)]
    if sender and _matches(sender, filter_address):
        return [WalletRow(id=f"{tx.id}-sender", transaction=tx, address=sender, role=WalletRole.SENDER)]
    return []


def transaction_rows(tx: Transaction, filter_address: Optional[str] = None) -> List[WalletRow]:
    """Wallet rows for a single transaction"""
    match tx.kind:
        case TransactionKind.MINT:
            if tx.to_address and _matches(tx.to_address, filter_address):
                return [WalletRow(
                    id=f"{tx.id}-mint-recipient",
                    transaction=tx,
                    address=tx.to_address,
                    role=WalletRole.MINT_RECIPIENT,
                )]
            return []
        case TransactionKind.BURN:
            if tx.from_address and _matches(tx.from_address, filter_address):
                return [WalletRow(
                    id=f"{tx.id}-burn-sender",
                    transaction=tx,
                    address=tx.from_address,
                    role=WalletRole.BURN_SENDER,
                )]
            return []
        case TransactionKind.TRANSFER:
            return _transfer_rows(tx, filter_address)
        case TransactionKind.SPLIT | TransactionKind.SYMBOL_CHANGE:
            # System events have no wallet; hidden while filtering by address
            if filter_address:
                return []
            return [WalletRow(
                id=f"{tx.id}-{tx.kind.value.lower()}",
                transaction=tx,
                address="",
                role=WalletRole.SYSTEM_EVENT,
            )]
    return []


def link_transfers(
    transactions: Iterable[Transaction],
    filter_address: Optional[str] = None,
) -> List[WalletRow]:
    """
    Transform transactions into wallet rows, preserving transaction order.

    - Transfer: recipient row then sender row, linked to each other
    - Mint: one mint-recipient row
    - Burn: one burn-sender row
    - Split / SymbolChange: one system-event row with no address

    With ``filter_address`` only rows for that address (case-insensitive)
    are kept; a kept transfer row still points at its hidden counterpart.
    """
    rows: List[WalletRow] = []
    for tx in transactions:
        rows.extend(transaction_rows(tx, filter_address))
    return rows
