"""
Structured logging setup.

Three independent pipelines:
1. File (JSON) -- only when logging.file is configured. Captures DEBUG+.
2. Human handler (stderr) -- only HUMAN events: what the toolkit is doing.
3. Technical console (stderr) -- INFO/DEBUG, controlled by -v. Excludes HUMAN.

Without -v the user sees only HUMAN lines. -v adds INFO, -vv adds DEBUG,
--quiet silences both console pipelines.
"""

import logging
import sys
from pathlib import Path

import structlog

from ..config.schema import LoggingConfig
from .human import HumanLogHandler
from .levels import HUMAN


def configure_logging(config: LoggingConfig, quiet: bool = False) -> None:
    """Configure the three logging pipelines.

    Args:
        config: Logging configuration (level, file, verbose)
        quiet: If True, disables the human and console handlers
    """
    logging.root.handlers.clear()
    structlog.reset_defaults()

    # Root logger captures everything; handlers filter by level
    logging.basicConfig(level=logging.DEBUG, format="%(message)s", handlers=[])

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    # ── Pipeline 1: JSON file ─────────────────────────────────────────────
    if config.file:
        file_path = Path(config.file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(file_path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(default=str),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        logging.root.addHandler(file_handler)

    # ── Pipeline 2: Human handler ─────────────────────────────────────────
    if not quiet and _human_enabled(config.level):
        human_handler = HumanLogHandler(stream=sys.stderr)
        human_handler.setLevel(HUMAN)
        human_handler.addFilter(lambda record: record.levelno == HUMAN)
        logging.root.addHandler(human_handler)

    # ── Pipeline 3: Technical console ─────────────────────────────────────
    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(_verbose_to_level(config.verbose))
        console_handler.addFilter(lambda record: record.levelno != HUMAN)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        logging.root.addHandler(console_handler)

    # Keeps records away from logging.lastResort when every pipeline is off
    if not logging.root.handlers:
        logging.root.addHandler(logging.NullHandler())

    # Every handler renders for itself, so records carry the raw event dict
    structlog.configure(
        processors=shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _human_enabled(level: str) -> bool:
    """HUMAN lines are shown unless the configured level is above them."""
    return level in ("debug", "info", "human")


def _verbose_to_level(verbose: int) -> int:
    """Map the -v counter to the console handler level.

    No -v -> WARNING, -v -> INFO, -vv and beyond -> DEBUG.
    """
    levels = {
        0: logging.WARNING,
        1: logging.INFO,
        2: logging.DEBUG,
    }
    return levels.get(verbose, logging.DEBUG)


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structured logger."""
    return structlog.get_logger(name)
