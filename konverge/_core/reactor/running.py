import asyncio
import dataclasses
import logging
import signal
import threading
from collections.abc import Awaitable, Callable
from typing import TypeVar

from konverge._cogs.clients import auth

logger = logging.getLogger(__name__)

_T = TypeVar('_T')

# An operation to run: it gets the API context and the stopper, and returns anything.
Operation = Callable[[auth.APIContext, asyncio.Event], Awaitable[_T]]

# How long the operation has to finish on its own after the first signal before it is cancelled.
DEFAULT_GRACE_PERIOD = 0.5


class OperationInterrupted(Exception):
    """ Raised when the operation was cancelled by the OS signals. """


@dataclasses.dataclass
class _Interruption:
    stopper: asyncio.Event
    task: asyncio.Task[object]
    grace_period: float
    signals: list[signal.Signals] = dataclasses.field(default_factory=list)
    timer: asyncio.TimerHandle | None = None


def run(
        operation: Operation[_T],
        *,
        info: auth.ConnectionInfo | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
) -> _T:
    """
    Run an operation in a new event loop: a blocking call for the sync code (e.g. CLI).

    The credentials are taken from the environment unless passed explicitly.
    """
    return asyncio.run(operate(operation, info=info, grace_period=grace_period))


async def operate(
        operation: Operation[_T],
        *,
        info: auth.ConnectionInfo | None = None,
        stopper: asyncio.Event | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
) -> _T:
    """
    Run an operation with a fresh API context, stoppable by the OS signals.

    On Ctrl+C or SIGTERM, the stopper is set, so that the waiting operations
    stop gracefully: they stop polling and report the cancellation.
    The operations that do not check the stopper (e.g. the API requests in flight)
    are cancelled after the grace period, or at once on the repeated signal;
    :class:`OperationInterrupted` is raised then.
    """
    info = info if info is not None else auth.ConnectionInfo.from_env()
    stopper = stopper if stopper is not None else asyncio.Event()
    loop = asyncio.get_running_loop()

    async with auth.APIContext(info) as context:
        task = asyncio.create_task(operation(context, stopper))
        interruption = _Interruption(stopper=stopper, task=task, grace_period=grace_period)

        signals_installed = False
        if threading.current_thread() is threading.main_thread():
            # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
            try:
                loop.add_signal_handler(signal.SIGINT, _on_signal, interruption, signal.SIGINT)
                loop.add_signal_handler(signal.SIGTERM, _on_signal, interruption, signal.SIGTERM)
                signals_installed = True
            except NotImplementedError:
                logger.warning("OS signals are ignored: can't add signal handler in Windows.")
        else:
            logger.warning("OS signals are ignored: running not in the main thread.")

        try:
            return await task
        except asyncio.CancelledError:
            # Our own cancellation is the interruption; the outer one escalates as usual.
            if not interruption.signals or not task.cancelled():
                raise
            names = ', '.join(signum.name for signum in interruption.signals)
            raise OperationInterrupted(f"The operation is interrupted by {names}.") from None
        finally:
            if interruption.timer is not None:
                interruption.timer.cancel()
            if signals_installed:
                loop.remove_signal_handler(signal.SIGINT)
                loop.remove_signal_handler(signal.SIGTERM)
            if not task.done():
                task.cancel()


def _on_signal(interruption: _Interruption, signum: signal.Signals) -> None:
    interruption.signals.append(signum)
    if len(interruption.signals) == 1:
        logger.info("Signal %s is received. Stopping.", signum.name)
        interruption.stopper.set()
        loop = interruption.task.get_loop()
        interruption.timer = loop.call_later(interruption.grace_period, interruption.task.cancel)
    else:
        logger.info("Signal %s is received again. Cancelling.", signum.name)
        interruption.task.cancel()
