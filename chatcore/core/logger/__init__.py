"""
Logging for chatcore: console (plain or JSON) plus an optional rotating JSON file.

Usage:
    from chatcore.core.logger import configure, get_logger, TurnLoggerAdapter

    configure()  # LoggerConfig.from_env(): LOG_LEVEL, LOG_FORMAT, LOG_DIR, ...

    logger = get_logger(__name__)
    turn_log = TurnLoggerAdapter(logger, tenant_id="t1", canal="whatsapp", contact="+1555")
    turn_log.info("gate matched")  # JSON output carries the turn fields under "extra"
"""
from chatcore.core.logger.adapters import TurnLoggerAdapter
from chatcore.core.logger.config import LoggerConfig
from chatcore.core.logger.formatters import JsonFormatter, PlainConsoleFormatter
from chatcore.core.logger.setup import configure, get_logger

__all__ = [
    "LoggerConfig",
    "JsonFormatter",
    "PlainConsoleFormatter",
    "TurnLoggerAdapter",
    "configure",
    "get_logger",
]
