"""CSV / JSON export of cap table snapshots and transaction feeds"""
import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from tokenledger.models.snapshot import LedgerSnapshot
from tokenledger.models.transaction import Transaction


def format_timestamp(timestamp: int) -> str:
    """Unix seconds to ISO-8601 UTC, e.g. 2024-01-01T00:00:00.000Z"""
    value = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def snapshot_to_csv(snapshot: LedgerSnapshot) -> str:
    """Cap table as CSV with a commented metadata header"""
    lines = [
        "# Cap-Table Export",
        f"# Block Number: {snapshot.as_of_index}",
        f"# Timestamp: {format_timestamp(snapshot.timestamp)}",
        f"# Total Supply: {snapshot.total_supply}",
    ]
    if snapshot.rounding_note:
        lines.append(f"# Note: {snapshot.rounding_note}")
    lines.append("")

    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(["address", "balance", "percentage"])
    for holder in snapshot.holders:
        writer.writerow([holder.address, holder.balance, holder.ownership_percentage])

    return "\n".join(lines) + "\n" + output.getvalue()


def snapshot_to_dict(snapshot: LedgerSnapshot) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "blockNumber": snapshot.as_of_index,
        "timestamp": format_timestamp(snapshot.timestamp),
        "totalSupply": str(snapshot.total_supply),
        "symbol": snapshot.symbol,
        "totalHolders": snapshot.holder_count,
    }
    if snapshot.rounding_note:
        metadata["roundingNote"] = snapshot.rounding_note

    return {
        "metadata": metadata,
        "holders": [
            {
                "address": h.address,
                "balance": str(h.balance),
                "percentage": h.ownership_percentage,
            }
            for h in snapshot.holders
        ],
    }


def snapshot_to_json(snapshot: LedgerSnapshot) -> str:
    """Cap table as indented JSON; balances are strings to keep full precision"""
    return json.dumps(snapshot_to_dict(snapshot), indent=2)


TRANSACTION_COLUMNS = [
    "hash", "log_index", "type", "block_number", "timestamp", "from", "to", "amount",
]


def transaction_to_dict(tx: Transaction) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "hash": tx.transaction_id,
        "log_index": tx.log_index,
        "type": tx.kind.value,
        "block_number": tx.index,
        "timestamp": format_timestamp(tx.timestamp),
        "from": tx.from_address,
        "to": tx.to_address,
        "amount": tx.amount_text,
        "data": tx.data,
    }


def transactions_to_csv(transactions: Iterable[Transaction]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(TRANSACTION_COLUMNS)
    for tx in transactions:
        row = transaction_to_dict(tx)
        writer.writerow(["" if row[c] is None else row[c] for c in TRANSACTION_COLUMNS])
    return output.getvalue()


def transactions_to_json(transactions: Iterable[Transaction]) -> str:
    rows: List[Dict[str, Any]] = [transaction_to_dict(tx) for tx in transactions]
    return json.dumps({"count": len(rows), "transactions": rows}, indent=2)
