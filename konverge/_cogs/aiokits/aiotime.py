"""
Sleeping that can be interrupted by an event, e.g. by the stopper.
"""
import asyncio


async def sleep(delay: float, wakeup: asyncio.Event | None = None) -> float | None:
    """
    Sleep for the delay, or until the wakeup event is set, whichever comes first.

    Returns the number of seconds left unslept if woken up by the event,
    or ``None`` if the full delay has passed. Zero and negative delays
    return immediately, even if the event is already set.
    """
    if delay <= 0:
        return None

    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        event = wakeup if wakeup is not None else asyncio.Event()
        await asyncio.wait_for(event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return None
    return max(0, delay - (loop.time() - started))
