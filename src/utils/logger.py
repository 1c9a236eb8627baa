import logging
import os

from rich.logging import RichHandler

from utils.config import settings


class CenteredFormatter(logging.Formatter):
    longest_name_length = 14  # Initial default width

    def __init__(self, fmt=None, datefmt=None, style="%", initial_width=14):
        super().__init__(fmt, datefmt, style)
        CenteredFormatter.longest_name_length = initial_width

    def format(self, record):
        CenteredFormatter.longest_name_length = max(
            CenteredFormatter.longest_name_length, len(record.name)
        )

        dynamic_width = CenteredFormatter.longest_name_length + 2
        record.name = f"{record.name.center(dynamic_width - 2)}"
        return super().format(record)


def _build_handler(log_level: int) -> logging.Handler:
    # the Textual app owns the terminal while running, LOG_FILE sends records elsewhere
    if settings.log_file:
        handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s [%(name)s] %(message)s")
        )
    else:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(CenteredFormatter("[%(name)s]  %(message)s"))
    handler.setLevel(log_level)
    return handler


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a storefront logger.

    Records go to a RichHandler, or to LOG_FILE when that is set.
    Level is DEBUG when the DEBUG env var is set, INFO otherwise.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    log_level = logging.DEBUG if os.getenv("DEBUG") else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        logger.addHandler(_build_handler(log_level))
        logger.propagate = False
        logger.debug(f"Logger for '{name}' initialized.")

    return logger
