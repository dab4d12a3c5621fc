"""Process-wide hooks that routers and repositories resolve at call time.

``main`` registers the connection factory and the subscriber resolver once at
import; tests may register their own.
"""
from __future__ import annotations

from typing import Any, Callable, Dict

_registry: Dict[str, Callable[..., Any]] = {}


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_subscriber: Callable[..., Any],
) -> None:
    _registry.update(get_conn=get_conn, get_current_subscriber=get_current_subscriber)


def _lookup(name: str) -> Callable[..., Any]:
    try:
        return _registry[name]
    except KeyError:
        raise RuntimeError(f"Application context has not been configured yet: {name}") from None


def get_conn() -> Any:
    return _lookup("get_conn")()


def get_current_subscriber(*args: Any, **kwargs: Any) -> Any:
    return _lookup("get_current_subscriber")(*args, **kwargs)


__all__ = ["configure", "get_conn", "get_current_subscriber"]
