import dataclasses
import io
import json
import logging
import re
import sys
from collections.abc import Mapping
from typing import Any

import aiohttp.web
import pytest

from konverge._cogs.clients.auth import APIContext, ConnectionInfo
from konverge._cogs.configs.configuration import ProviderSettings
from konverge._core.actions.loggers import ClusterLogger, ClusterPrefixingTextFormatter, configure


@pytest.fixture()
def settings():
    """ Settings for fast tests: no sleeping between the status checks, no retries. """
    settings = ProviderSettings()
    settings.networking.error_backoffs = []
    settings.polling.delay = 0
    settings.polling.min_interval = 0
    settings.polling.max_interval = 0
    return settings


@pytest.fixture()
def logger():
    return ClusterLogger(label='fake-cluster', region='ewr')


#
# Mocks for the cloud API. Reasons:
# 1. We do not test the client library, we test the layers on top of it,
#    so everything low-level should be mocked and assumed to be functional.
# 2. No external calls must be made under any circumstances.
#    The unit-tests must be fully isolated from the environment.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
def connection_info(hostname):
    return ConnectionInfo(server=f'http://{hostname}/v2', api_key='fake-key')


@pytest.fixture()
async def context(connection_info):
    async with APIContext(connection_info) as context:
        yield context


@dataclasses.dataclass(frozen=True)
class RecordedRequest:
    method: str
    path: str
    headers: Mapping[str, str]
    data: Any


@pytest.fixture()
def api_mock(aresponses, hostname):
    """
    A factory of server-side handlers for `aresponses` with request recording.

    The difference from passing the responses directly to `aresponses.add`
    is that it is possible to assert on whether the response was handled
    by that handler at all (i.e. HTTP URL & method matched), and on what
    was sent in the requests, especially if there are multiple responses.

    Sample usage::

        async def test_me(api_mock):
            handler = api_mock('get', '/kubernetes/clusters/id1', {'vke_cluster': {}})
            await do_something()
            assert len(handler.requests) == 1
    """
    def add(method, path, body=None, *, status=200, repeat=1):
        async def handler(request):
            text = await request.text()
            handler.requests.append(RecordedRequest(
                method=request.method.lower(),
                path=request.path,
                headers=request.headers.copy(),  # case-insensitive
                data=json.loads(text) if text else None,
            ))
            if body is None:
                return aiohttp.web.Response(status=status)
            elif isinstance(body, str):
                return aiohttp.web.Response(status=status, text=body)
            else:
                return aiohttp.web.json_response(body, status=status)

        handler.requests = []
        aresponses.add(hostname, f'/v2{path}', method, handler, repeat=repeat)
        return handler
    return add


#
# Helpers for the logging checks.
#


@pytest.fixture()
def logstream(caplog):
    """ Prefixing is done at the final output. We have to intercept it. """

    logger = logging.getLogger()
    handlers = list(logger.handlers)

    # Setup all log levels of sub-libraries. A sife-effect: the handlers are also added.
    configure(verbose=True)

    # Remove any stream handlers added in the step above. But keep the caplog's handlers.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stderr:
            logger.removeHandler(handler)

    # Inject our stream-intercepting handler.
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    formatter = ClusterPrefixingTextFormatter('prefix %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    try:
        with caplog.at_level(logging.DEBUG):
            yield stream
    finally:
        logger.removeHandler(handler)
        logger.handlers[:] = handlers  # undo `configure()`


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    caplog.set_level(logging.DEBUG)

    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn
