"""TriageQ - autonomous folder and mailbox triage with tiered Gemini routing"""

from __future__ import annotations

__version__ = "0.1.0"


def __getattr__(name: str):
    """
    Lazy imports to avoid loading the Google SDKs when only importing lightweight modules.
    """
    if name == "AutomationRuntime":
        from triageq.runtime import AutomationRuntime

        return AutomationRuntime

    if name in ("PendingActionsQueue", "PendingAction"):
        from triageq.actions import pending

        return getattr(pending, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "AutomationRuntime",
    "PendingAction",
    "PendingActionsQueue",
]
