import logging
from typing import Optional

import coloredlogs

LOG_FORMAT = "%(asctime)s.%(msecs)03d - [%(filename)s:%(lineno)d] - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler: Optional[logging.FileHandler] = None


class ReplaceFilter(logging.Filter):
    """Masks a secret in log records before they are emitted."""

    def __init__(self, secret: str, replacement: str):
        super().__init__()
        self.secret = secret
        self.replacement = replacement

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secret and self.secret in record.getMessage():
            record.msg = record.getMessage().replace(self.secret, self.replacement)
            record.args = None
        return True


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    is_prod: bool = False,
    secrets: Optional[list[str]] = None,
):
    global _file_handler

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    shutdown_logging()
    if log_file:
        # plain text in files, colours only on a terminal
        _file_handler = logging.FileHandler(log_file)
        _file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root = logging.getLogger()
        root.setLevel(numeric_level)
        root.addHandler(_file_handler)
    elif is_prod:
        logging.basicConfig(
            format=LOG_FORMAT,
            level=numeric_level,
            datefmt=DATE_FORMAT,
        )
    else:
        coloredlogs.install(
            fmt=LOG_FORMAT,
            level=numeric_level,
            datefmt=DATE_FORMAT,
        )

    for secret in secrets or []:
        if secret:
            logging.getLogger("httpx").addFilter(ReplaceFilter(secret, "<censored token>"))


def shutdown_logging():
    """Detach and close the log file opened by configure_logging, if any."""
    global _file_handler
    if _file_handler is None:
        return
    logging.getLogger().removeHandler(_file_handler)
    _file_handler.close()
    _file_handler = None
