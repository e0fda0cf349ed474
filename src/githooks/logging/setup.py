"""
Structured logging setup.

Two pipelines:
1. File (JSON) - if a log file is configured. Captures everything (DEBUG+).
2. Console (stderr) - WARNING by default, INFO with -v, DEBUG with -vv.

Hooks write their user-facing report with click on stderr; the console
pipeline only adds technical detail, so it stays quiet by default.
"""

import logging
import sys
from pathlib import Path

import structlog

from ..config.schema import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(config: LoggingConfig, quiet: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        config: Logging configuration (level, file, verbose).
        quiet: If True, disables the console pipeline.
    """
    logging.root.handlers.clear()
    structlog.reset_defaults()

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[],
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    # ── Pipeline 1: JSON file ─────────────────────────────────────────────
    file_handler = None
    if config.file:
        file_path = Path(config.file).expanduser()
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(file_path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        logging.root.addHandler(file_handler)

    # ── Pipeline 2: console ───────────────────────────────────────────────
    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(_console_level(config))
        if file_handler:
            console_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                    foreign_pre_chain=shared_processors,
                )
            )
        logging.root.addHandler(console_handler)

    if file_handler:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _console_level(config: LoggingConfig) -> int:
    """Console level: the more verbose of ``level`` and the -v count.

    no -v   → configured level (WARNING by default)
    -v      → INFO
    -vv     → DEBUG
    """
    verbose_levels = {0: logging.WARNING, 1: logging.INFO}
    from_verbose = verbose_levels.get(config.verbose, logging.DEBUG)
    return min(from_verbose, _LEVELS.get(config.level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)
