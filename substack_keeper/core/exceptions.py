"""
Custom exception classes for the keeper.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class KeeperException(Exception):
    """Base exception class for the SubStack keeper."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(KeeperException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class StacksError(KeeperException):
    """Raised when there's a Stacks blockchain error."""

    def __init__(self, message: str, code: str = "STACKS_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)


class StacksAPIError(StacksError):
    """Raised when the Stacks API cannot be reached or answers badly."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STACKS_API_ERROR", details)


class ReadOnlyCallError(StacksError):
    """Raised when a read-only contract call is rejected by the node."""

    def __init__(self, function_name: str, cause: str):
        super().__init__(
            f"Read-only call {function_name} failed: {cause}",
            "READ_ONLY_CALL_ERROR",
            {"function_name": function_name, "cause": cause}
        )


class BroadcastError(StacksError):
    """Raised when the node rejects a transaction broadcast."""

    def __init__(self, error: str, reason: Optional[str] = None, txid: Optional[str] = None):
        self.error = error
        self.reason = reason
        super().__init__(
            f"Broadcast failed: {error}" + (f" ({reason})" if reason else ""),
            "BROADCAST_ERROR",
            {"error": error, "reason": reason, "txid": txid}
        )


class ClarityError(KeeperException):
    """Raised when a Clarity value cannot be encoded, decoded or unwrapped."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CLARITY_ERROR", details)


class AddressError(KeeperException):
    """Raised when a Stacks address fails to decode or checksum."""

    def __init__(self, address: str, reason: str):
        super().__init__(
            f"Invalid Stacks address {address!r}: {reason}",
            "ADDRESS_ERROR",
            {"address": address, "reason": reason}
        )
