"""structlog configuration for docrag.

Events are rendered as coloured console lines, or as one JSON object per
line when ``json_output`` is set (the CLI sets it when ``APP_ENV`` is
``production``).  Logs go to stderr so that CLI results on stdout stay
clean to pipe.

Every event emitted while an ingestion run is in progress carries the
run's ``dataset_id``, ``source`` and current ``stage``, including events
from the store and the embedding providers, through
:func:`ingestion_context` and :func:`bind_stage`.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Third-party loggers that are chatty at INFO/DEBUG: one line per HTTP
# request (httpx, openai) or per SQL call (aiosqlite).
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite")


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog and stdlib logging through one renderer on stderr.

    Third-party libraries are held at WARNING unless *log_level* is DEBUG.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.dev.set_exc_info,
    ]
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    third_party_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


@contextmanager
def ingestion_context(dataset_id: int, source: str) -> Iterator[None]:
    """Bind one ingestion run's identity for the duration of the block.

    The bindings live in context variables, so concurrent runs in separate
    tasks never see each other's values.  They are removed on exit.
    """
    with structlog.contextvars.bound_contextvars(
        dataset_id=dataset_id,
        source=source,
        stage="accept",
    ):
        yield


def bind_stage(stage: str) -> None:
    """Record the pipeline stage of the current ingestion run."""
    structlog.contextvars.bind_contextvars(stage=stage)
