from importlib import import_module
from typing import Any

__all__ = [
    "SessionStore",
    "resolve_provider",
    "ChatSubmission",
    "compute_dependency_levels",
    "Workspace",
]

_EXPORTS = {
    "SessionStore": ".session_store",
    "resolve_provider": ".provider_resolver",
    "ChatSubmission": ".chat_orchestrator",
    "compute_dependency_levels": ".plan_layout",
    "Workspace": ".workspace",
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
