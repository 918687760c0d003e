"""
Domain errors for payment requests.
"""

from typing import Iterable


class BlockbookError(Exception):
    """Base class for Blockbook errors."""


class PaymentRequestNotFound(BlockbookError):
    """No payment request with the given id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Payment request {request_id} not found")


class PaymentRequestConflict(BlockbookError):
    """The request is no longer open, so it cannot change state."""

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Payment request {request_id} is already {status}")


class ConfigurationError(BlockbookError):
    """Required configuration is missing at startup."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            "Missing required configuration: " + ", ".join(self.missing)
        )
