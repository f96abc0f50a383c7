"""
Error kinds for the detect-then-swap run.

Feed-layer errors never leave the subscriber: they are folded into a
no-trade result. Execution-layer errors propagate to the entry flow, which
logs them with their context and exits non-zero.
"""

from __future__ import annotations

from typing import Any, Optional


class TradeTriggerError(Exception):
    """Base class carrying structured context for log lines."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigMissing(TradeTriggerError):
    """A required setting is unset. Raised before any network activity."""

    def __init__(self, setting: str, **kwargs):
        super().__init__(f"Missing required setting {setting}", **kwargs)
        self.setting = setting


class ResolutionError(TradeTriggerError):
    """Token metadata could not be read from the contract."""

    def __init__(self, message: str, address: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.address = address


class FeedConnectionError(TradeTriggerError):
    """Transport or protocol failure on the trade feed."""


class ExecutionError(TradeTriggerError):
    """A swap pipeline step failed; `step` names which one."""

    def __init__(self, message: str, step: str, **kwargs):
        super().__init__(message, **kwargs)
        self.step = step


class InsufficientBalance(ExecutionError):
    pass


class NoRouteFound(ExecutionError):
    pass


class InsufficientGasFunds(ExecutionError):
    pass


class AllowanceNotGranted(ExecutionError):
    pass


class SubmissionError(ExecutionError):
    """The RPC rejected the transaction or it was never confirmed."""


class ConfirmationTimeout(SubmissionError):
    pass


class ExecutionReverted(ExecutionError):
    """Mined with receipt status 0."""

    def __init__(self, message: str, step: str, outcome=None, **kwargs):
        super().__init__(message, step, **kwargs)
        self.outcome = outcome
