import logging
import sys


class Log:
    """Centralized logging for the anonymization core and its API.

    Keyword fields are appended to the message as ``key=value`` pairs and are
    also passed through ``extra`` for handlers that read record attributes.
    """

    _logger: logging.Logger = logging.getLogger("pve_anonymizer")

    @classmethod
    def configure(cls, log_level: str) -> None:
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
            )
            cls._logger.addHandler(handler)

    @staticmethod
    def render(message: str, fields: dict[str, object]) -> str:
        if not fields:
            return message
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{message} ({pairs})"

    @classmethod
    def _emit(cls, level: int, message: str, fields: dict[str, object]) -> None:
        if cls._logger.isEnabledFor(level):
            cls._logger.log(level, cls.render(message, fields), extra=fields)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        cls._emit(logging.INFO, message, kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        cls._emit(logging.ERROR, message, kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        cls._emit(logging.WARNING, message, kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        cls._emit(logging.DEBUG, message, kwargs)
