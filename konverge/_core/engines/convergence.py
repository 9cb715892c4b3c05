"""
Waiting for the remote resources to converge to their target state.

A freshly created resource (e.g. a managed Kubernetes cluster) is not usable
immediately: it is provisioned by the cloud in the background, and reports
its progress via a status label, such as ``"pending"`` -> ``"active"``.

The status is polled with the caller-provided ``fetch`` coroutine until one of
the terminal outcomes is reached:

* the target label is seen (a success);
* an unknown label is seen (the resource has left its expected lifecycle);
* the resource is not found for too many times in a row;
* the fetching fails for any other reason (escalated at once);
* the deadline is reached;
* the stopper is set by the caller (a deliberate abort, not a timeout).

The state of each call (the backoff, the not-found counter, the deadline)
is local to that call, so there can be many concurrent waits for different
resources in the same event loop, and they do not block each other.
"""
import asyncio
import dataclasses
import enum
import itertools
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

from konverge._cogs.aiokits import aiotime
from konverge._cogs.clients import errors
from konverge._cogs.configs import configuration
from konverge._cogs.helpers import typedefs


class Outcome(str, enum.Enum):
    PENDING = 'pending'
    TARGET = 'target'
    UNEXPECTED = 'unexpected'
    NOT_FOUND = 'not-found'
    TIMED_OUT = 'timed-out'
    CANCELLED = 'cancelled'
    TRANSPORT_ERROR = 'transport-error'


@dataclasses.dataclass(frozen=True)
class Observation:
    """ The result of one status check: the status label and the raw object. """
    state: str
    raw: Any = None
    error: BaseException | None = None


@dataclasses.dataclass(frozen=True)
class PollSpec:
    target: str
    transient_states: frozenset[str] = frozenset()
    min_interval: float = 5
    max_interval: float = 10
    poll_interval: float | None = None
    delay: float = 0
    timeout: float = 60 * 60
    not_found_budget: int = 0

    def __post_init__(self) -> None:
        # Accept any collection of states, but store them immutable and hashable.
        object.__setattr__(self, 'transient_states', frozenset(self.transient_states))
        if self.target in self.transient_states:
            raise ValueError(f"The target state {self.target!r} cannot also be transient.")
        if self.min_interval < 0:
            raise ValueError(f"The minimal interval must be non-negative: {self.min_interval!r}")
        if self.max_interval < self.min_interval:
            raise ValueError(f"The maximal interval {self.max_interval!r} is below "
                             f"the minimal interval {self.min_interval!r}.")
        if self.poll_interval is None and self.min_interval == 0 and self.max_interval > 0:
            raise ValueError(f"The minimal interval must be positive to grow up to "
                             f"the maximal interval {self.max_interval!r}.")
        if self.poll_interval is not None and self.poll_interval <= 0:
            raise ValueError(f"The polling interval must be positive: {self.poll_interval!r}")
        if self.delay < 0:
            raise ValueError(f"The initial delay must be non-negative: {self.delay!r}")
        if self.timeout <= 0:
            raise ValueError(f"The timeout must be positive: {self.timeout!r}")
        if self.not_found_budget < 0:
            raise ValueError(f"The not-found budget must be non-negative: {self.not_found_budget!r}")

    @classmethod
    def from_settings(
            cls,
            settings: configuration.PollingSettings,
            *,
            target: str,
            transient_states: frozenset[str] | set[str] | list[str],
    ) -> "PollSpec":
        return cls(
            target=target,
            transient_states=frozenset(transient_states),
            delay=settings.delay,
            poll_interval=settings.poll_interval,
            min_interval=settings.min_interval,
            max_interval=settings.max_interval,
            timeout=settings.timeout,
            not_found_budget=settings.not_found_budget,
        )


class ConvergenceError(Exception):
    """ A base class for all the classified failures of the convergence. """
    outcome: Outcome = Outcome.PENDING

    def __init__(self, message: str, *, observation: Observation | None = None) -> None:
        super().__init__(message)
        self.observation = observation


class ResourceNotFoundError(ConvergenceError):
    outcome = Outcome.NOT_FOUND


class UnexpectedStateError(ConvergenceError):
    outcome = Outcome.UNEXPECTED

    @property
    def state(self) -> str | None:
        return self.observation.state if self.observation is not None else None


class ConvergenceTimeoutError(ConvergenceError):
    outcome = Outcome.TIMED_OUT


class ConvergenceCancelledError(ConvergenceError):
    outcome = Outcome.CANCELLED


class TransportError(ConvergenceError):
    outcome = Outcome.TRANSPORT_ERROR

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


@dataclasses.dataclass(frozen=True)
class ConvergenceResult:
    outcome: Outcome
    observation: Observation | None = None
    error: ConvergenceError | None = None
    fetches: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.TARGET

    def unwrap(self) -> Observation:
        if self.error is not None:
            raise self.error
        if self.observation is None:
            raise RuntimeError("A converged result without an observation. This is a bug.")
        return self.observation


# The fetcher can also return None for the absent resources, same as raising APINotFoundError.
Fetcher = Callable[[], Awaitable[Observation | None]]


class _FetchTimeoutError(Exception):
    """ The fetcher's own timeout (e.g. of an HTTP request), not the deadline. """


async def _fetch_once(fetch: Fetcher) -> Observation | None:
    try:
        return await fetch()
    except asyncio.TimeoutError as e:
        raise _FetchTimeoutError(str(e)) from e


def backoff(spec: PollSpec) -> Iterator[float]:
    """
    Generate the intervals between the status checks, endlessly.

    The intervals start with the minimal interval and double on every check,
    but never exceed the maximal interval. A fixed polling interval, if set,
    replaces the growing intervals (but also does not exceed the maximum).
    """
    if spec.poll_interval is not None:
        return itertools.repeat(min(spec.poll_interval, spec.max_interval))
    return _doubling(spec.min_interval, spec.max_interval)


def _doubling(start: float, limit: float) -> Iterator[float]:
    interval = start
    while True:
        yield interval
        interval = min(interval * 2, limit)


async def poll(
        spec: PollSpec,
        fetch: Fetcher,
        *,
        stopper: asyncio.Event | None = None,
        logger: typedefs.Logger,
) -> ConvergenceResult:
    """
    Check the resource's state until it converges, fails, or the time is over.

    All classified failures are returned as the result's outcome & error.
    Only the task cancellation (:class:`asyncio.CancelledError`) is escalated
    as usually in asyncio; the deliberate abort is requested via the stopper.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + spec.timeout
    intervals = backoff(spec)
    not_found_ticks = 0
    fetches = 0
    observation: Observation | None = None

    def _failure(
            cls: type[ConvergenceError],
            message: str,
            cause: BaseException | None = None,
    ) -> ConvergenceResult:
        error = cls(message, observation=observation)
        error.__cause__ = cause
        return ConvergenceResult(cls.outcome, observation=observation, error=error, fetches=fetches)

    def _cancelled() -> ConvergenceResult:
        logger.debug(f"Stopped waiting for {spec.target!r}: cancelled after {fetches} checks.")
        return _failure(ConvergenceCancelledError,
                        f"Waiting for {spec.target!r} was cancelled after {fetches} checks.")

    def _timed_out() -> ConvergenceResult:
        logger.debug(f"Stopped waiting for {spec.target!r}: timed out after {fetches} checks.")
        return _failure(ConvergenceTimeoutError,
                        f"Timed out waiting for {spec.target!r} after {spec.timeout}s "
                        f"(last state: {observation.state if observation else None!r}).")

    # Give the fresh resource some time to appear before the first status check.
    if spec.delay > 0:
        if stopper is not None and stopper.is_set():
            return _cancelled()
        await aiotime.sleep(min(spec.delay, max(0, deadline - loop.time())), wakeup=stopper)

    while True:
        if stopper is not None and stopper.is_set():
            return _cancelled()
        remaining = deadline - loop.time()
        if remaining <= 0:
            return _timed_out()

        fetches += 1
        try:
            fetched = await asyncio.wait_for(_fetch_once(fetch), timeout=remaining)
        except asyncio.TimeoutError:
            return _timed_out()
        except errors.APINotFoundError as e:
            fetched = None
            observation = Observation(state='', error=e)
        except Exception as e:
            cause = e.__cause__ if isinstance(e, _FetchTimeoutError) and e.__cause__ else e
            observation = Observation(state='', error=cause)
            logger.debug(f"Stopped waiting for {spec.target!r}: failed to fetch the state: {cause!r}")
            return _failure(TransportError, f"Failed to fetch the state: {cause!r}", cause=cause)
        else:
            if fetched is None:
                observation = Observation(state='')
            else:
                observation = fetched

        if fetched is None:
            not_found_ticks += 1
            logger.debug(f"The resource is not found ({not_found_ticks}/{spec.not_found_budget}).")
            if not_found_ticks > spec.not_found_budget:
                return _failure(ResourceNotFoundError,
                                f"The resource was not found after {not_found_ticks} checks.")
        elif fetched.state == spec.target:
            logger.debug(f"The resource has reached the state {spec.target!r}.")
            return ConvergenceResult(Outcome.TARGET, observation=observation, fetches=fetches)
        elif fetched.state in spec.transient_states:
            not_found_ticks = 0
            logger.debug(f"The resource is in the state {fetched.state!r}; waiting for {spec.target!r}.")
        else:
            logger.debug(f"The resource is in an unexpected state {fetched.state!r}.")
            return _failure(UnexpectedStateError,
                            f"Unexpected state {fetched.state!r} while waiting for {spec.target!r}; "
                            f"expected one of {sorted(spec.transient_states)!r}.")

        if stopper is not None and stopper.is_set():
            return _cancelled()
        interval = next(intervals)
        await aiotime.sleep(min(interval, max(0, deadline - loop.time())), wakeup=stopper)


async def wait_for(
        spec: PollSpec,
        fetch: Fetcher,
        *,
        stopper: asyncio.Event | None = None,
        logger: typedefs.Logger,
) -> Observation:
    """ Same as :func:`poll`, but raise the classified failures as errors. """
    result = await poll(spec, fetch, stopper=stopper, logger=logger)
    return result.unwrap()
