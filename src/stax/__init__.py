"""stax - statistics assertions for cost-based SQL estimates."""

import logging

from rich.logging import RichHandler

DEFAULT_LOGGER_NAME = "stax"
DEFAULT_TIME_FORMAT = "[%X]"


def get_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: int = logging.INFO,
    force_reconfigure: bool = False,
) -> logging.Logger:
    """
    Get a configured logger instance for stax.

    This function provides a centralized way to create and configure loggers
    for the stax library. Every logger gets a single Rich console handler so
    that check reports and derived SQL render consistently in test output.

    Args:
        name: Logger name. Defaults to "stax". Can be used to create child loggers
            like "stax.api" for specific modules.
        level: Logging level as an integer (logging.INFO, logging.DEBUG, etc.).
            Defaults to logging.INFO.
        force_reconfigure: If True, reconfigure the logger even if handlers already
            exist. Useful for changing configuration at runtime. Defaults to False.

    Returns:
        A configured logger instance.

    Example:
        >>> logger = get_logger()
        >>> logger.info("Checking estimates for [bold]SELECT * FROM item[/bold]")

        >>> debug_logger = get_logger("stax.debug", level=logging.DEBUG)
        >>> debug_logger.debug("Derived SQL ...")
    """
    logger = logging.getLogger(name)

    if not logger.handlers or force_reconfigure:
        if force_reconfigure and logger.handlers:
            logger.handlers.clear()

        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            markup=True,
            log_time_format=DEFAULT_TIME_FORMAT,
        )
        logger.addHandler(handler)

        # Prevent propagation to avoid duplicate logs
        logger.propagate = False

    # Always set the level (even if logger already has handlers)
    logger.setLevel(level)

    return logger
