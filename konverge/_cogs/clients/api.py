import asyncio
import collections.abc
import itertools
from collections.abc import Mapping
from typing import Any

import aiohttp

from konverge._cogs.clients import auth, errors
from konverge._cogs.configs import configuration
from konverge._cogs.helpers import typedefs

# The errors that are worth retrying: the next attempt can succeed without any changes.
TEMPORARY_ERRORS = (
    aiohttp.ClientConnectionError,
    errors.APIServerError,
    errors.APITooManyRequestsError,
    asyncio.TimeoutError,
)


async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    backoffs = settings.networking.error_backoffs
    backoffs = backoffs if isinstance(backoffs, collections.abc.Iterable) else [backoffs]
    count = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    backoff: float | None
    for retry, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        idx = f"#{retry}/{count}" if count is not None else f"#{retry}"
        what = f"{method.upper()} {url}"
        try:
            if retry > 1:
                logger.debug(f"Request attempt {idx}: {what}")

            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)  # but do not parse it!

        except TEMPORARY_ERRORS as e:
            if backoff is None:  # i.e. the last or the only attempt.
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            else:
                logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(backoff)  # non-awakable! but still cancellable.
        else:
            if retry > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def _parsed(
        method: str,
        url: str,
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        payload: object | None = None,
        logger: typedefs.Logger,
) -> Any:
    response = await request(
        method=method,
        url=url,
        payload=payload,
        context=context,
        settings=settings,
        logger=logger,
    )
    async with response:
        return await errors.parse_response(response)


async def get(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('get', url, context=context, settings=settings, logger=logger)


async def post(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        payload: object | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('post', url, payload=payload,
                         context=context, settings=settings, logger=logger)


async def put(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        payload: object | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('put', url, payload=payload,
                         context=context, settings=settings, logger=logger)


async def patch(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        payload: object | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('patch', url, payload=payload,
                         context=context, settings=settings, logger=logger)


async def delete(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.ProviderSettings,
        logger: typedefs.Logger,
) -> Any:
    return await _parsed('delete', url, context=context, settings=settings, logger=logger)
