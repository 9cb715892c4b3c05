"""
Cloud API errors.

The underlying client library (now, ``aiohttp``) can be replaced in the future.
We cannot rely on embedding its exceptions all over the code of the package.
Hence, we have our own hierarchy of exceptions for the cloud API errors.

Low-level errors, such as the network connectivity issues, SSL/HTTPS issues,
etc, are escalated from the client library as is, since they are related not
to the domain of the cloud API, but rather to the networking and encryption.

The original errors of the client library are chained as the causes of our own
specialised errors -- for better explainability of errors in the stack traces.

Some selected HTTP statuses are made into their own classes, so that they could
be intercepted and handled in other places: e.g. 401 for authorization failures,
404 for the resources that are gone or not yet visible after creation.
The classification is done by statuses only, never by the texts of the errors:
the texts are for humans and can change at any time.
"""
import collections.abc
import json
from typing import Any

import aiohttp
from typing_extensions import NotRequired, TypedDict


# As returned by the cloud API in the bodies of non-2xx responses.
class RawError(TypedDict):
    error: str
    status: NotRequired[int]


class APIError(Exception):

    def __init__(
            self,
            payload: RawError | None,
            *,
            status: int,
    ) -> None:
        message = payload.get('error') if payload else None
        super().__init__(message, payload)
        self._status = status
        self._payload = payload

    def __str__(self) -> str:
        message = self.message
        return f"{self._status}: {message}" if message else f"{self._status}"

    @property
    def status(self) -> int:
        return self._status

    @property
    def message(self) -> str | None:
        return self._payload.get('error') if self._payload else None

    @property
    def payload(self) -> RawError | None:
        return self._payload


class APIClientError(APIError):
    pass


class APIServerError(APIError):
    pass


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass


class APIConflictError(APIClientError):
    pass


class APITooManyRequestsError(APIClientError):
    pass


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Check for specialised API errors, and raise with extended information.

    Built-in aiohttp's errors only provide the rudimentary titles of the status
    codes, but not the explanation why that error happened. The cloud API
    provides this information in the bodies of non-2xx responses.
    """
    if response.status >= 400:

        # Read the response's body before it is closed by raise_for_status().
        payload: RawError | None
        try:
            payload = await response.json(content_type=None)
        except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
            payload = None

        # Better be safe: who knows which sensitive information can be dumped in other bodies.
        if not isinstance(payload, collections.abc.Mapping) or not isinstance(payload.get('error'), str):
            payload = None

        cls = (
            APIUnauthorizedError if response.status == 401 else
            APIForbiddenError if response.status == 403 else
            APINotFoundError if response.status == 404 else
            APIConflictError if response.status == 409 else
            APITooManyRequestsError if response.status == 429 else
            APIClientError if 400 <= response.status < 500 else
            APIServerError if 500 <= response.status < 600 else
            APIError
        )

        # Raise the package-specific error while keeping the original error in scope.
        # This call also closes the response's body, so it cannot be read afterwards.
        try:
            response.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise cls(payload, status=response.status) from e


async def parse_response(
        response: aiohttp.ClientResponse,
) -> Any:
    """
    Check the response for errors, and either raise or return the parsed data.

    Empty bodies (e.g. ``204 No Content`` on updates & deletions) are ``None``.
    """
    await check_response(response)
    text = await response.text()
    return json.loads(text) if text.strip() else None
