from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    UNPARSABLE_INPUT = "UnparsableInput"
    AMBIGUOUS_REFERENCE = "AmbiguousReference"
    UNSUPPORTED_INTENT = "UnsupportedIntent"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_NAME = "InvalidName"
    MISSING_PARAMETER = "MissingParameter"
    LOW_CONFIDENCE = "LowConfidence"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    EXPIRED_CONFIRMATION = "ExpiredConfirmation"
    NETWORK_ERROR = "NetworkError"
    EXECUTION_REVERTED = "ExecutionReverted"
    SESSION_NOT_FOUND = "SessionNotFound"


class PipelineError(Exception):
    code: ErrorCode = ErrorCode.UNPARSABLE_INPUT
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.value)
        self.message = message or self.code.value


class UnparsableInput(PipelineError):
    code = ErrorCode.UNPARSABLE_INPUT


class AmbiguousReference(PipelineError):
    code = ErrorCode.AMBIGUOUS_REFERENCE


class UnsupportedIntent(PipelineError):
    code = ErrorCode.UNSUPPORTED_INTENT


class InvalidAmount(PipelineError):
    code = ErrorCode.INVALID_AMOUNT


class InvalidName(PipelineError):
    code = ErrorCode.INVALID_NAME


class InsufficientBalance(PipelineError):
    code = ErrorCode.INSUFFICIENT_BALANCE


class ExpiredConfirmation(PipelineError):
    code = ErrorCode.EXPIRED_CONFIRMATION


class NetworkError(PipelineError):
    code = ErrorCode.NETWORK_ERROR
    retryable = True


class ExecutionReverted(PipelineError):
    code = ErrorCode.EXECUTION_REVERTED

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(f"execution reverted: {reason}" if reason else "execution reverted")
        self.reason = reason


class SessionNotFound(PipelineError):
    code = ErrorCode.SESSION_NOT_FOUND


class ConfirmationRequired(AssertionError):
    """
    Raised when a mutating action reaches execution without a released
    confirmation. This is a contract violation, not a user-facing outcome.
    """
