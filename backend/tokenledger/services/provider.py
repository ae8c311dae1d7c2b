"""Ledger provider interface and JSON-RPC implementation"""
import enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

import structlog
from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from tokenledger.config import get_settings
from tokenledger.models.events import (
    AllowlistUpdatePayload,
    EventKind,
    IndexedRecord,
    LedgerEvent,
    SplitPayload,
    SymbolChangePayload,
    TransferPayload,
)

logger = structlog.get_logger()
settings = get_settings()


class PointSelector(str, enum.Enum):
    """State readable at a specific block."""
    BALANCE_OF = "balanceOf"
    TOTAL_SUPPLY = "totalSupply"
    SYMBOL = "symbol"
    MULTIPLIER = "multiplier"
    DECIMALS = "decimals"


class LedgerProvider(Protocol):
    """Minimum surface consumed from the external ledger."""

    async def get_tip(self) -> IndexedRecord:
        ...

    async def get_record_at(self, index: int) -> IndexedRecord:
        ...

    async def get_entity_existence(self, entity_id: str, index: int) -> bool:
        ...

    async def get_point_state(
        self,
        entity_id: str,
        selector: PointSelector,
        index: int,
        account: Optional[str] = None,
    ) -> Any:
        ...

    async def query_events(
        self,
        entity_id: str,
        kinds: Set[EventKind],
        from_index: int,
        to_index: int,
    ) -> List[LedgerEvent]:
        ...


# ChainEquityToken ABI fragments used by the engine
TOKEN_ABI: List[Dict[str, Any]] = [
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "SplitExecuted",
        "anonymous": False,
        "inputs": [
            {"name": "newMultiplier", "type": "uint256", "indexed": False},
            {"name": "blockNumber", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "SymbolChanged",
        "anonymous": False,
        "inputs": [
            {"name": "oldSymbol", "type": "string", "indexed": False},
            {"name": "newSymbol", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "AllowlistUpdated",
        "anonymous": False,
        "inputs": [
            {"name": "account", "type": "address", "indexed": True},
            {"name": "approved", "type": "bool", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "symbol",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "function",
        "name": "multiplier",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

# Event kind -> (ABI event name, canonical signature)
EVENT_SIGNATURES = {
    EventKind.TRANSFER: ("Transfer", "Transfer(address,address,uint256)"),
    EventKind.SPLIT: ("SplitExecuted", "SplitExecuted(uint256,uint256)"),
    EventKind.SYMBOL_CHANGE: ("SymbolChanged", "SymbolChanged(string,string)"),
    EventKind.ALLOWLIST_UPDATE: ("AllowlistUpdated", "AllowlistUpdated(address,bool)"),
}


def _event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


def decode_payload(kind: EventKind, args: Dict[str, Any]):
    """Build the typed payload from decoded event arguments"""
    match kind:
        case EventKind.TRANSFER:
            return TransferPayload(
                from_address=args["from"],
                to_address=args["to"],
                amount=int(args["value"]),
            )
        case EventKind.SPLIT:
            return SplitPayload(
                new_multiplier=int(args["newMultiplier"]),
                at_index=int(args["blockNumber"]),
            )
        case EventKind.SYMBOL_CHANGE:
            return SymbolChangePayload(
                old_symbol=args["oldSymbol"],
                new_symbol=args["newSymbol"],
            )
        case EventKind.ALLOWLIST_UPDATE:
            return AllowlistUpdatePayload(
                account=args["account"],
                approved=bool(args["approved"]),
            )
    raise ValueError(f"Unsupported event kind: {kind}")


class Web3LedgerProvider:
    """Async JSON-RPC provider for the ChainEquityToken contract"""

    def __init__(self, rpc_url: Optional[str] = None):
        self.rpc_url = rpc_url or settings.rpc_url
        self._w3: Optional[AsyncWeb3] = None
        self._contracts: Dict[str, Any] = {}

    async def connect(self) -> None:
        """Create the JSON-RPC connection"""
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
            logger.info("Connected to ledger RPC", url=self.rpc_url)

    async def disconnect(self) -> None:
        """Close the JSON-RPC connection"""
        if self._w3:
            await self._w3.provider.disconnect()
            self._w3 = None
            self._contracts.clear()
            logger.info("Disconnected from ledger RPC")

    @property
    def w3(self) -> AsyncWeb3:
        """Get the web3 client, raise if not connected"""
        if self._w3 is None:
            raise RuntimeError("Ledger provider not connected. Call connect() first.")
        return self._w3

    def _contract(self, entity_id: str):
        address = Web3.to_checksum_address(entity_id)
        if address not in self._contracts:
            self._contracts[address] = self.w3.eth.contract(address=address, abi=TOKEN_ABI)
        return self._contracts[address]

    async def get_tip(self) -> IndexedRecord:
        """Get the latest block"""
        block = await self.w3.eth.get_block("latest")
        return IndexedRecord(index=int(block["number"]), timestamp=int(block["timestamp"]))

    async def get_record_at(self, index: int) -> IndexedRecord:
        """Get a block by number"""
        block = await self.w3.eth.get_block(index)
        if block is None:
            raise LookupError(f"Failed to get block data for block {index}")
        return IndexedRecord(index=int(block["number"]), timestamp=int(block["timestamp"]))

    async def get_entity_existence(self, entity_id: str, index: int) -> bool:
        """Check whether contract code exists at a block"""
        code = await self.w3.eth.get_code(Web3.to_checksum_address(entity_id), block_identifier=index)
        return code is not None and len(code) > 0

    async def get_point_state(
        self,
        entity_id: str,
        selector: PointSelector,
        index: int,
        account: Optional[str] = None,
    ) -> Any:
        """Call a view function of the token at a block"""
        contract = self._contract(entity_id)
        if selector == PointSelector.BALANCE_OF:
            if account is None:
                raise ValueError("balanceOf requires an account")
            fn = contract.functions.balanceOf(Web3.to_checksum_address(account))
        else:
            fn = getattr(contract.functions, selector.value)()
        return await fn.call(block_identifier=index)

    async def query_events(
        self,
        entity_id: str,
        kinds: Iterable[EventKind],
        from_index: int,
        to_index: int,
    ) -> List[LedgerEvent]:
        """Fetch and decode logs of the given kinds in [from_index, to_index]"""
        contract = self._contract(entity_id)
        events: List[LedgerEvent] = []
        for kind in kinds:
            event_name, signature = EVENT_SIGNATURES[kind]
            logs = await self.w3.eth.get_logs({
                "address": contract.address,
                "fromBlock": from_index,
                "toBlock": to_index,
                "topics": [_event_topic(signature)],
            })
            decoder = getattr(contract.events, event_name)()
            for log in logs:
                decoded = decoder.process_log(log)
                events.append(LedgerEvent(
                    payload=decode_payload(kind, dict(decoded["args"])),
                    transaction_id=Web3.to_hex(decoded["transactionHash"]),
                    index=int(decoded["blockNumber"]),
                    log_index=int(decoded["logIndex"]),
                ))
        events.sort(key=lambda e: e.sort_key)
        return events


# Singleton instance
_ledger_provider: Optional[Web3LedgerProvider] = None


async def get_ledger_provider() -> Web3LedgerProvider:
    """Get or create ledger provider singleton"""
    global _ledger_provider
    if _ledger_provider is None:
        _ledger_provider = Web3LedgerProvider()
        await _ledger_provider.connect()
    return _ledger_provider


async def close_ledger_provider() -> None:
    """Close ledger provider singleton"""
    global _ledger_provider
    if _ledger_provider is not None:
        await _ledger_provider.disconnect()
        _ledger_provider = None
