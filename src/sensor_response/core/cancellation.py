"""
Cooperative cancellation signals.

Long-running work (mapping construction, estimation rounds) polls a signal
between units of work. A signal is either a ``threading.Event``-like object
with ``is_set()`` or a zero-argument callable returning a bool.
"""

from typing import Any, Callable, Optional, Protocol, Union


class EventLike(Protocol):
    def is_set(self) -> bool: ...


CancelSignal = Union[EventLike, Callable[[], bool]]


def is_cancelled(cancel: Optional[Any]) -> bool:
    """Evaluate a cancellation signal; None never cancels."""
    if cancel is None:
        return False
    is_set = getattr(cancel, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    if callable(cancel):
        return bool(cancel())
    raise TypeError(f"Unsupported cancellation signal: {cancel!r}")
