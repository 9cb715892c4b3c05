import dataclasses
import os
from types import TracebackType

import aiohttp

from konverge._cogs.helpers import versions

DEFAULT_SERVER = 'https://api.vultr.com/v2'


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    """
    A single endpoint with the specific credentials to access the cloud API.

    The API key is excluded from the reprs, so that it does not leak to logs.
    """
    server: str = DEFAULT_SERVER
    api_key: str | None = dataclasses.field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "ConnectionInfo":
        api_key = os.environ.get('VULTR_API_KEY')
        if not api_key:
            raise LoginError("No credentials found: set the VULTR_API_KEY environment variable.")
        server = os.environ.get('VULTR_API_URL') or DEFAULT_SERVER
        return cls(server=server, api_key=api_key)


class LoginError(Exception):
    """ Raised when the credentials are absent or rejected by the API. """


class APIContext:
    """
    A container for an aiohttp session and the contextual info for URL building.

    The context is passed explicitly to every API call instead of being stored
    globally: every caller decides which credentials and which session to use.
    It is also an async context manager that closes the session on exit::

        async with APIContext(ConnectionInfo.from_env()) as context:
            await api.get('/kubernetes/clusters', context=context, ...)
    """

    # The main contained object used by the API methods.
    session: aiohttp.ClientSession

    # Contextual information for URL building.
    server: str

    def __init__(
            self,
            info: ConnectionInfo,
            *,
            session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__()
        self.session = session if session is not None else self.make_aiohttp_session(info)

        # It is a good practice to self-identify a bit, even with a user-provided session.
        if self.session.headers.get('User-Agent') is None:
            self.session.headers['User-Agent'] = f'konverge/{versions.version or "unknown"}'

        self.server = info.server

    def make_aiohttp_session(self, info: ConnectionInfo) -> aiohttp.ClientSession:
        headers: dict[str, str] = {}
        if info.api_key:
            headers['Authorization'] = f'Bearer {info.api_key}'
        return aiohttp.ClientSession(headers=headers)

    async def __aenter__(self) -> "APIContext":
        return self

    async def __aexit__(
            self,
            exc_type: type[BaseException] | None,
            exc_val: BaseException | None,
            exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self.session.close()
