"""
Static helper functions for scenario execution.
"""

import asyncio
from typing import Any, Iterable


def truncate_str_for_log(value: Any, *, max_chars: int = 800) -> str:
    """Truncate a string value for logging."""
    text = str(value if value is not None else "")
    if len(text) > max_chars:
        return text[:max_chars] + "…[truncated]"
    return text


async def wait_event(event: asyncio.Event, timeout: float) -> bool:
    """
    Wait up to ``timeout`` seconds for ``event``.

    Returns True if the event was set, False on timeout.
    """
    if event.is_set():
        return True
    if timeout <= 0:
        return False
    try:
        await asyncio.wait_for(event.wait(), timeout)
    except TimeoutError:
        return False
    return True


async def cancel_and_wait(tasks: Iterable[asyncio.Task]) -> None:
    """Cancel ``tasks`` and wait until every one has finished."""
    pending = [t for t in tasks if not t.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
