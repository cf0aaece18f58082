"""Custom exceptions for the synchronization engine."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional


class SyncEngineError(Exception):
    """Base exception for the cross-chain synchronization engine."""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.trace_id = trace_id or str(uuid.uuid4())
        super().__init__(self.message)


class ConfigurationError(SyncEngineError):
    """Raised when a chain is missing its bridge contract, signer or DEX config."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)


class ChainClientError(SyncEngineError):
    """Raised when an RPC call, signing, gas estimation or receipt wait fails."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "CHAIN_CLIENT_ERROR")
        super().__init__(message, **kwargs)


class InvalidAmountError(SyncEngineError):
    """Raised when a supply or reserve value is not a non-negative number."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "INVALID_AMOUNT")
        super().__init__(message, **kwargs)


class TokenNotFoundError(SyncEngineError):
    """Raised when curve parameters are requested for an unknown token."""

    def __init__(self, token_id: str):
        super().__init__(
            f"Token not found: {token_id}",
            error_code="TOKEN_NOT_FOUND",
            details={"token_id": token_id},
        )


class DeploymentNotFoundError(SyncEngineError):
    """Raised when a (token, chain) deployment does not exist."""

    def __init__(self, token_id: str, chain: str):
        super().__init__(
            f"No deployment found for token {token_id} on chain {chain}",
            error_code="DEPLOYMENT_NOT_FOUND",
            details={"token_id": token_id, "chain": chain},
        )


class BridgeError(SyncEngineError):
    """Raised when a bridge transfer cannot proceed."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "BRIDGE_ERROR")
        super().__init__(message, **kwargs)


class GraduationError(SyncEngineError):
    """Raised when DEX pool creation for a graduating token fails."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "GRADUATION_ERROR")
        super().__init__(message, **kwargs)


def create_safe_error_dict(error: Exception, trace_id: str) -> Dict[str, Any]:
    """
    Create a safe error dictionary for logging that doesn't expose sensitive data.

    Args:
        error: Exception object
        trace_id: Trace ID for correlation

    Returns:
        Safe error dictionary for logging
    """
    error_dict: Dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "trace_id": trace_id,
    }

    if isinstance(error, SyncEngineError):
        error_dict["error_code"] = error.error_code
        error_dict["details"] = error.details

    return error_dict
