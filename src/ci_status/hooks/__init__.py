"""Post-commit hooks notified when jobs succeed."""

from src.ci_status.hooks.dispatcher import (
    HookDispatcher,
    HookFailure,
    TransitionHook,
)

__all__ = [
    "HookDispatcher",
    "HookFailure",
    "TransitionHook",
]
