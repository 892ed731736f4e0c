from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "ExitDecision",
    "FileStateStore",
    "LoopController",
    "LoopState",
    "MemoryStateStore",
    "extract_assertion",
    "matches",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .completion import extract_assertion, matches
    from .controller import ExitDecision, LoopController
    from .state import FileStateStore, LoopState, MemoryStateStore


def __getattr__(name: str):
    if name in {"extract_assertion", "matches"}:
        from . import completion

        return getattr(completion, name)
    if name in {"ExitDecision", "LoopController"}:
        from . import controller

        return getattr(controller, name)
    if name in {"FileStateStore", "LoopState", "MemoryStateStore"}:
        from . import state

        return getattr(state, name)
    raise AttributeError(f"module 'ralphloop' has no attribute {name!r}")
