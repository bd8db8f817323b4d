"""
Unified exception hierarchy for relaylog.

Errors are split along the lifecycle of the logger:
- configuration: raised from ``init`` before anything is wired
- rotation: filesystem failures of the rotating file sink (non-fatal)
- delivery: remote index hook failures (swallowed by the dispatcher)
- panic: explicit, caller-requested failure after the entry was written
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RelayLogError(Exception):
    """Base class for every relaylog error."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


# ================================
# Configuration Errors
# ================================


class ConfigurationError(RelayLogError):
    """Invalid logger configuration; no logging capability is established."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class AlreadyInitializedError(RelayLogError):
    """Raised when ``init`` is called again before the previous teardown."""

    def __init__(self) -> None:
        super().__init__(
            "Logger is already initialized; call the teardown returned by init() first",
            code="ALREADY_INITIALIZED",
        )


# ================================
# Runtime Errors
# ================================


class RotationError(RelayLogError):
    """Filesystem failure while rotating the log file.

    The previous handle stays active and rotation is retried on the next tick.
    """

    def __init__(self, *, path: str, reason: str) -> None:
        super().__init__(
            f"cannot rotate log file to {path}: {reason}",
            code="ROTATION_FAILED",
            details={"path": path, "reason": reason},
        )


class HookDeliveryError(RelayLogError):
    """A remote index hook could not deliver an entry."""

    def __init__(self, *, kind: str, reason: str, status_code: Optional[int] = None) -> None:
        details: Dict[str, Any] = {"kind": kind, "reason": reason}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"{kind} hook delivery failed: {reason}", code="HOOK_DELIVERY_FAILED", details=details)


class LogPanic(RelayLogError):
    """Raised by the ``panic`` family after the entry has been written and flushed."""

    def __init__(self, message: str, *, fields: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="PANIC", details=fields)
        self.fields = self.details


__all__ = [
    "RelayLogError",
    "ConfigurationError",
    "AlreadyInitializedError",
    "RotationError",
    "HookDeliveryError",
    "LogPanic",
]
