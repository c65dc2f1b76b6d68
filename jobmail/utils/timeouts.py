"""Hard timeouts for blocking calls.

Python threads cannot be killed, so a call that overruns its budget is left to
finish on its own daemon thread while the caller gets a timeout error and its
worker slot back. The abandoned result is discarded.
"""

import contextvars
import threading
from typing import Any, Callable, Optional, Type, TypeVar

T = TypeVar("T")


class CallTimeoutError(TimeoutError):
    """Raised when a call does not finish within its budget."""

    def __init__(self, message: str, timeout: float):
        super().__init__(message)
        self.timeout = timeout


def run_with_timeout(
    func: Callable[..., T],
    timeout: Optional[float],
    *args: Any,
    name: str = "bounded-call",
    error_cls: Type[Exception] = CallTimeoutError,
    **kwargs: Any,
) -> T:
    """Run ``func(*args, **kwargs)`` and give up after ``timeout`` seconds.

    Exceptions raised by ``func`` are re-raised in the caller. A ``timeout``
    of None or 0 runs the call inline without a helper thread.

    Args:
        func: Callable to run
        timeout: Budget in seconds
        name: Thread name, shown in logs and thread dumps
        error_cls: Exception type raised on expiry; constructed as
            ``error_cls(message, timeout)``

    Raises:
        error_cls: If the call is still running when the budget expires
    """
    if not timeout:
        return func(*args, **kwargs)

    outcome: dict = {}
    # Carry the caller's log context into the helper thread
    context = contextvars.copy_context()

    def target() -> None:
        try:
            outcome["value"] = context.run(func, *args, **kwargs)
        except BaseException as e:  # re-raised in the calling thread
            outcome["error"] = e

    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        raise error_cls(f"{name} did not finish within {timeout:g}s", timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
