"""Logging configuration using structlog.

Logs go to stderr so a dispatch layer can keep stdout for its own protocol
(an MCP server speaks JSON-RPC there). Every gateway operation binds ``db``
and ``op`` as context variables, so pool, retry and adapter events logged
while it runs carry them too.
"""

import contextlib
import logging
import sys
from collections.abc import Iterator, MutableMapping
from typing import Any

import structlog

_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Longest SQL text written to a log line; the query log keeps the full statement.
MAX_LOGGED_SQL = 500


class _LazyStderrFactory:
    """Resolve sys.stderr when each logger is created, not at configure() time.

    Test runners swap sys.stderr between tests; a captured handle goes stale.
    """

    def __call__(self, *args: Any, **kwargs: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(file=sys.stderr)


def _shorten_sql(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    sql = event_dict.get("sql")
    if isinstance(sql, str):
        sql = " ".join(sql.split())
        if len(sql) > MAX_LOGGED_SQL:
            sql = sql[:MAX_LOGGED_SQL] + "..."
        event_dict["sql"] = sql
    return event_dict


def setup_logging(verbose: bool = False, *, json_logs: bool = False) -> None:
    """Configure structlog for the gateway.

    Args:
        verbose: If True, log at DEBUG (SQL text, cache hits, pool events). Otherwise INFO.
        json_logs: Render one JSON object per line instead of the console format.
    """
    log_level = "debug" if verbose else "info"

    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _shorten_sql,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVELS[log_level]),
        context_class=dict,
        logger_factory=_LazyStderrFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger, optionally bound with a name.

    Call inside functions, never at module level, so setup_logging() applies.
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger


@contextlib.contextmanager
def operation_context(db: str, op: str) -> Iterator[None]:
    """Bind ``db`` and ``op`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(db=db, op=op):
        yield
