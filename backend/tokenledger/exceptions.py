"""Error taxonomy for ledger reconstruction.

Every error raised by the engine derives from LedgerError and carries a
``category`` (used to pick the plain-language message shown to users) and a
``retryable`` flag. Engines add the parameters of the failed operation and
re-raise; they never swallow these errors.
"""
from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger engine errors"""

    category = "unexpected"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FutureTimestamp(LedgerError):
    """Requested timestamp lies beyond the timestamp of the current tip"""

    category = "future"

    def __init__(self, target_timestamp: int, tip_timestamp: int):
        super().__init__(
            f"Timestamp {target_timestamp} is in the future. "
            f"Current tip timestamp: {tip_timestamp}"
        )
        self.target_timestamp = target_timestamp
        self.tip_timestamp = tip_timestamp


class FutureIndex(LedgerError):
    """Requested index lies beyond the current tip"""

    category = "future"

    def __init__(self, index: int, tip_index: int):
        super().__init__(f"Block number {index} is in the future. Current block: {tip_index}")
        self.index = index
        self.tip_index = tip_index


class BeforeOrigin(LedgerError):
    """Requested point precedes the deployment of the tracked contract"""

    category = "before_origin"

    def __init__(
        self,
        deployment_index: int,
        index: Optional[int] = None,
        timestamp: Optional[int] = None,
    ):
        if index is not None:
            target = f"Block number {index}"
        else:
            target = f"Timestamp {timestamp}"
        super().__init__(
            f"{target} is before contract deployment at block {deployment_index}"
        )
        self.deployment_index = deployment_index
        self.index = index
        self.timestamp = timestamp


class OriginNotFound(LedgerError):
    """The existence predicate is false even at the tip"""

    category = "not_found"

    def __init__(self, entity_id: str, tip_index: int):
        super().__init__(f"No contract found at address {entity_id} (checked up to block {tip_index})")
        self.entity_id = entity_id
        self.tip_index = tip_index


class SourceUnavailable(LedgerError):
    """The event source failed after all retries were exhausted"""

    category = "network"
    retryable = True

    def __init__(
        self,
        kind: str,
        from_index: int,
        to_index: int,
        attempts: int = 0,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            f"Failed to query {kind} events in blocks {from_index}-{to_index}"
            + (f" after {attempts} attempts" if attempts else "")
        )
        self.kind = kind
        self.from_index = from_index
        self.to_index = to_index
        self.attempts = attempts
        self.retry_after = retry_after


class ValidationError(LedgerError):
    """Invalid input, detected before any network call"""

    category = "validation"


class SupersededRequest(LedgerError):
    """An in-flight request was overtaken by a newer filter state"""

    category = "superseded"
    retryable = True

    def __init__(self, generation: int, current_generation: int):
        super().__init__(
            f"Request for filter generation {generation} superseded by generation {current_generation}"
        )
        self.generation = generation
        self.current_generation = current_generation


USER_MESSAGES = {
    "future": "The selected date/time is in the future. Please select a past date.",
    "before_origin": "The selected date/time is before the contract was deployed. Please select a later date.",
    "not_found": "Contract deployment block could not be found. Please verify the contract address is correct.",
    "network": "Network error occurred or too many requests were made. Please wait a moment and try again.",
    "superseded": "The request was replaced by a newer one. Please try again.",
    "unexpected": "An unexpected error occurred. Please try again.",
}


def user_message(error: Exception) -> str:
    """Convert an error to a user-friendly message.

    Validation messages describe the user's own input and are shown as is;
    every other category maps to a fixed message.
    """
    if isinstance(error, ValidationError):
        return error.message
    if isinstance(error, LedgerError):
        return USER_MESSAGES.get(error.category, USER_MESSAGES["unexpected"])
    return USER_MESSAGES["unexpected"]
