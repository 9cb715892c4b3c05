"""
All configuration flags, options, settings to fine-tune the provider.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

All of them have reasonable defaults, so ``ProviderSettings()`` is usable
as is. The defaults of the polling settings reproduce the waiting parameters
that are known to work for the managed Kubernetes clusters: clusters usually
take 5-10 minutes to provision, sometimes more.
"""
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the whole API request, including the response reading.
    """

    connect_timeout: float | None = None
    """
    A timeout for establishing the connection to the API server.
    """

    error_backoffs: float | Iterable[float] = (1, 1, 1)
    """
    Backoffs (in seconds) for the retries of the temporary errors.

    The temporary errors are the connection errors, the request timeouts,
    the 5xx server errors, and 429 "Too Many Requests". All other API errors
    are permanent and escalate immediately, without retries.

    The number of backoffs is the number of retries (plus one initial attempt).
    An infinite iterator makes the retries endless.
    """


@dataclasses.dataclass
class PollingSettings:
    """
    Settings for waiting until the remote resources are converged.
    """

    delay: float = 10
    """
    How long to wait before the very first status check of a new resource.
    """

    min_interval: float = 5
    """
    The first (shortest) interval between the status checks.
    The intervals then double on every check, up to :attr:`max_interval`.
    """

    max_interval: float = 10
    """
    The longest interval between the status checks.
    """

    poll_interval: float | None = None
    """
    A fixed interval between the status checks instead of the growing ones.
    It is still limited by :attr:`max_interval`. ``None`` means the backoff.
    """

    timeout: float = 60 * 60
    """
    For how long (in seconds) to wait for the resource to converge in total.
    """

    not_found_budget: int = 60
    """
    How many consecutive "not found" responses are tolerated.

    A newly created resource is not always visible right after its creation
    (eventual consistency of the API). Such responses are retried as usual
    status checks, until the resource appears or this budget is exhausted.
    """


@dataclasses.dataclass
class ProviderSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    polling: PollingSettings = dataclasses.field(default_factory=PollingSettings)
