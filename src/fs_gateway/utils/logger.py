# src/fs_gateway/utils/logger.py
"""
Centralized logging configuration for the FreeSWITCH gateway.
Provides consistent, configurable structured logging across all modules with
support for JSON or console output and optional rotating log files.
"""

import inspect
import logging
import logging.handlers
import os
import sys
from functools import wraps
from typing import Optional, Callable, Any

import structlog

# Format applied by stdlib handlers; structlog has already rendered the event
DEFAULT_LOG_FORMAT = "%(message)s"

# Logging levels dictionary for configuration
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}

class LoggerConfig:
    """Configuration class for logger settings"""
    def __init__(
        self,
        level: str = "INFO",
        format: str = "json",
        output_file: Optional[str] = None,
        max_bytes: int = 10_485_760,  # 10MB
        backup_count: int = 5
    ):
        self.level = LOG_LEVELS.get(level.upper(), logging.INFO)
        self.format = format.lower()
        self.output_file = output_file
        self.max_bytes = max_bytes
        self.backup_count = backup_count

class GatewayLogger:
    """
    Central logging facility for the gateway.
    Provides structured logging with configurable outputs and formats.
    """
    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = None
            self._initialized = True

    def configure(self, config: LoggerConfig) -> None:
        """
        Configure structlog and the stdlib root logger with the provided settings.

        Args:
            config: LoggerConfig instance with desired settings
        """
        self._config = config

        # Create log directory if it doesn't exist
        if config.output_file and os.path.dirname(config.output_file):
            os.makedirs(os.path.dirname(config.output_file), exist_ok=True)

        processors = [
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]

        if config.format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer())

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(config.level)
        root_logger.handlers = []

        handlers = []

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(config.level)
        handlers.append(console_handler)

        if config.output_file:
            file_handler = logging.handlers.RotatingFileHandler(
                config.output_file,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count
            )
            file_handler.setLevel(config.level)
            handlers.append(file_handler)

        formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
        for handler in handlers:
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        structlog.get_logger(__name__).info(
            "Logger configured",
            level=logging.getLevelName(config.level),
            format=config.format,
            output_file=config.output_file
        )

    def get_logger(self, name: str = None) -> structlog.stdlib.BoundLogger:
        """
        Get a logger instance with the given name.

        Loggers obtained before configure() is called pick up the
        configuration lazily on first use.

        Args:
            name: Optional name for the logger (defaults to module name)

        Returns:
            Structured logger instance
        """
        return structlog.get_logger(name)

def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Shortcut for GatewayLogger().get_logger(name)."""
    return GatewayLogger().get_logger(name)

def log_function_call(level: str = "DEBUG") -> Callable:
    """
    Decorator to log calls of sync or async functions with arguments and results.

    Args:
        level: Logging level for the function calls

    Returns:
        Decorator function
    """
    log_level = LOG_LEVELS.get(level.upper(), logging.DEBUG)

    def decorator(func: Callable) -> Callable:
        logger = get_logger(func.__module__)

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                logger.log(log_level, "Function call", function=func.__qualname__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error("Function exception",
                                 function=func.__qualname__,
                                 error=str(e))
                    raise
                logger.log(log_level, "Function return",
                           function=func.__qualname__,
                           result=str(result))
                return result
            return async_wrapper

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            logger.log(log_level, "Function call", function=func.__qualname__)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error("Function exception",
                             function=func.__qualname__,
                             error=str(e))
                raise
            logger.log(log_level, "Function return",
                       function=func.__qualname__,
                       result=str(result))
            return result
        return wrapper
    return decorator
