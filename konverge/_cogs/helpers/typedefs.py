"""
Rudimentary type [re-]definitions for Python & mypy.

Some StdLib types are generics in the type-sheds, but not at runtime.
Examples: logging.LoggerAdapter, asyncio.Task, asyncio.Future.

This modules defines them in a most suitable and reusable way. Plus it adds
some common plain type definitions used across the codebase (for convenience).
"""
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# As publicly exposed: we only promise that it is based on one of the built-in loggable classes.
Logger = Union[logging.Logger, LoggerAdapter]

# Raw JSON-decoded payloads of the cloud API, as they come over the wire.
RawPayload = Mapping[str, Any]
