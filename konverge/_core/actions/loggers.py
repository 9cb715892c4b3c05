"""
Per-cluster logging with the cluster identifiers in the messages.

Every message logged via :class:`ClusterLogger` carries a reference to the
cluster (its id, label, region), so that the messages of several clusters
handled at the same time can be told apart: either as a ``[label/id]`` prefix
in the text logs, or as a separate field in the JSON logs.
"""
import copy
import enum
import logging
from collections.abc import Mapping, MutableMapping
from typing import Any

from pythonjsonlogger.core import RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter

from konverge._cogs.helpers import typedefs

logger = logging.getLogger('konverge.clusters')

# The log record's attribute with the cluster reference, as put by ClusterLogger.
REF_ATTR = 'vke_ref'

# A key for cluster references in JSON logs, as seen by the log parsers.
DEFAULT_JSON_REFKEY = 'cluster'

# The upper levels of the JSON severities; everything above is "fatal".
_SEVERITIES = [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
]


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


def format_reference(ref: Mapping[str, Any] | None) -> str:
    """ Render the cluster reference as ``[label/id]``, ``[label]``, ``[id]``, or nothing. """
    names = [str(name) for name in (ref.get('label'), ref.get('id')) if name] if ref else []
    return f"[{'/'.join(names)}]" if names else ''


class ClusterFormatter(logging.Formatter):
    """ A base class of our own formatters, to tell them from the 3rd-party ones. """


class ClusterTextFormatter(ClusterFormatter):
    pass


class ClusterJsonFormatter(ClusterFormatter, JsonFormatter):
    """
    JSON logs with the cluster reference as a nested object, plus the severity.
    """

    def __init__(self, *args: Any, refkey: str | None = None, **kwargs: Any) -> None:
        # The raw reference must not leak as a top-level field: it goes under the refkey only.
        kwargs['reserved_attrs'] = {*kwargs.get('reserved_attrs', RESERVED_ATTRS), REF_ATTR}
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self.refkey = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, Any],
            record: logging.LogRecord,
            message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        ref = getattr(record, REF_ATTR, None)
        if ref is not None:
            log_record[self.refkey] = ref
        log_record.setdefault('severity', next(
            (name for level, name in _SEVERITIES if record.levelno <= level), 'fatal'))


class ClusterPrefixingMixin(ClusterFormatter):
    def format(self, record: logging.LogRecord) -> str:
        prefix = format_reference(getattr(record, REF_ATTR, None))
        if prefix:
            record = copy.copy(record)  # shallow; other handlers must see the original message.
            record.msg = f"{prefix} {record.msg}"
        return super().format(record)


class ClusterPrefixingTextFormatter(ClusterPrefixingMixin, ClusterTextFormatter):
    pass


class ClusterPrefixingJsonFormatter(ClusterPrefixingMixin, ClusterJsonFormatter):
    pass


class ClusterLogger(typedefs.LoggerAdapter):
    """
    A logger/adapter to carry the cluster identifiers for formatting.

    The identifiers are used for formatting the per-cluster messages
    in :class:`ClusterPrefixingMixin` and :class:`ClusterJsonFormatter`.

    The id is not known before the cluster is created, so a new logger
    is made once the cluster has got its id (see :meth:`with_id`).
    """

    def __init__(self, *, label: str | None, region: str | None = None, id: str | None = None) -> None:
        super().__init__(logger, {REF_ATTR: dict(id=id, label=label, region=region)})

    def with_id(self, id: str) -> "ClusterLogger":
        ref = (self.extra or {}).get(REF_ATTR, {})
        return ClusterLogger(label=ref.get('label'), region=ref.get('region'), id=id)

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # The stdlib adapter replaces the message's extras; we keep both.
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get('extra', {})}
        return msg, kwargs


class _KonvergeStreamHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """ Our own handler: replaced on re-configuration, never duplicated. """


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    handler = _KonvergeStreamHandler()
    handler.setFormatter(make_formatter(log_format=log_format, log_prefix=log_prefix,
                                        log_refkey=log_refkey))

    # Every CLI invocation re-configures the logging; the handlers of the previous ones are gone.
    root = logging.getLogger()
    root.handlers[:] = [h for h in root.handlers if not isinstance(h, _KonvergeStreamHandler)]
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug or verbose else logging.WARNING if quiet else logging.INFO)

    # The event loop's own messages are only shown in the debug mode.
    asyncio_logger = logging.getLogger('asyncio')
    asyncio_logger.propagate = bool(debug)
    if not debug:
        asyncio_logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> ClusterFormatter:
    """
    Make a formatter for the format. The JSON logs are not prefixed by default, the text ones are.
    """
    prefixed = log_prefix if log_prefix is not None else log_format is not LogFormat.JSON
    if log_format is LogFormat.JSON:
        json_cls = ClusterPrefixingJsonFormatter if prefixed else ClusterJsonFormatter
        return json_cls(refkey=log_refkey)
    elif isinstance(log_format, LogFormat):
        fmt = log_format.value
    elif isinstance(log_format, str):
        fmt = log_format
    else:
        raise ValueError(f"Unsupported log format: {log_format!r}")
    text_cls = ClusterPrefixingTextFormatter if prefixed else ClusterTextFormatter
    return text_cls(fmt)
