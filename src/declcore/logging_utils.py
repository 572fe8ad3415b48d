"""Runtime logging helpers."""

from __future__ import annotations

import os
import sys

from loguru import logger

from .config import EngineConfig

LOG_FILTER_ENV = "DECLCORE_LOG_FILTER"

_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {thread.name} | {name}:{function}:{line} | {message}"
_CONFIGURED = False


def _parse_log_filter(default_level: str = "info") -> tuple[str, dict[str | None, str | bool]]:
    """Parse the DECLCORE_LOG_FILTER env var.

    Format: "level" or "level,module=level,..."
    Examples:
        - "info" - global INFO level
        - "debug,declcore.scheduler=debug" - global DEBUG, scheduler at DEBUG
        - "info,declcore.graph=false" - global INFO, graph logging disabled

    Returns:
        (global_level, module_filter_dict)
    """
    filter_env = os.getenv(LOG_FILTER_ENV, default_level).lower()
    parts = [p.strip() for p in filter_env.split(",") if p.strip()]

    filter_dict: dict[str | None, str | bool] = {}
    global_level = default_level.lower()

    for part in parts:
        if "=" in part:
            module, level = part.split("=", 1)
            module = module.strip()
            level = level.strip()
            if level == "false":
                filter_dict[module] = False
            else:
                filter_dict[module] = level.upper()
        else:
            global_level = part

    # "" is the default entry for every module without its own level
    filter_dict.setdefault("", global_level.upper())
    return global_level, filter_dict


def configure_logging(config: EngineConfig | None = None, *, force: bool = False) -> None:
    """Enable declcore logging and send it to stderr.

    The library is silent until this is called. Levels come from
    DECLCORE_LOG_FILTER, falling back to ``config.log_level``.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    default_level = (config or EngineConfig()).log_level
    _, module_filter = _parse_log_filter(default_level)

    logger.remove()
    logger.add(
        sys.stderr,
        level="TRACE",
        format=_FORMAT,
        backtrace=False,
        diagnose=False,
        filter=module_filter,
    )
    logger.enable("declcore")

    _CONFIGURED = True
