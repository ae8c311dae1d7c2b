"""Token ledger engine services"""
from .block_lookup import IndexResolver
from .cap_table import LedgerAggregator, calculate_ownership_percentage, calculate_percentage_sum
from .event_source import EventSource
from .history import WindowedHistory
from .ledger_session import LedgerSession
from .linker import link_transfers
from .provider import LedgerProvider, PointSelector, Web3LedgerProvider
from .retry import RetryPolicy, with_retry
from .session_cache import SessionCache

__all__ = [
    "IndexResolver",
    "EventSource",
    "SessionCache",
    "LedgerSession",
    # Provider
    "LedgerProvider",
    "PointSelector",
    "Web3LedgerProvider",
    # Retry
    "RetryPolicy",
    "with_retry",
    # Cap table
    "LedgerAggregator",
    "calculate_ownership_percentage",
    "calculate_percentage_sum",
    # History
    "WindowedHistory",
    "link_transfers",
]
