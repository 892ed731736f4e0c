from __future__ import annotations


class RalphLoopError(Exception):
    """Base class for user-correctable loop errors."""


class InvalidArgumentError(RalphLoopError, ValueError):
    pass


class CorruptStateError(RalphLoopError, ValueError):
    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"corrupt loop state in {path}: {reason}")
        self.path = path
        self.reason = reason


class NotResumableError(RalphLoopError):
    pass


class LoopActiveError(RalphLoopError):
    pass


class InterviewStateError(RalphLoopError):
    pass
