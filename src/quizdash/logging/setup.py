import sys
import logging
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from quizdash.config.settings import AppSettings, settings

SENSITIVE_KEYS = ["key", "token", "password", "secret"]


def _mask(value: str) -> str:
    if len(value) > 8:
        return value[:4] + "****" + value[-4:]
    return "********"


def make_sensitive_data_filter(app_settings: AppSettings):
    """Builds a filter that masks configured secrets in log records."""
    secrets = [s for s in (app_settings.github_token, app_settings.supabase_key) if s]

    def sensitive_data_filter(record: dict[str, Any]) -> bool:
        extra = record.get("extra")
        if isinstance(extra, dict):
            for extra_key, value in extra.items():
                if any(sk in extra_key.lower() for sk in SENSITIVE_KEYS) and isinstance(value, str):
                    extra[extra_key] = _mask(value)

        for secret in secrets:
            if secret in record["message"]:
                record["message"] = record["message"].replace(secret, "********")

        return True  # Keep the record after masking

    return sensitive_data_filter


def setup_logging(app_settings: Optional[AppSettings] = None) -> None:
    """Configures Loguru logger based on application settings."""
    app_settings = app_settings or settings
    sensitive_data_filter = make_sensitive_data_filter(app_settings)
    logger.remove()  # Remove default handler

    # sys.stderr is looked up per message so the progress bar can redirect it
    logger.add(
        lambda message: sys.stderr.write(message),
        level=app_settings.log_level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=True,
        diagnose=False,
        filter=sensitive_data_filter,
    )

    if app_settings.log_dir is not None:
        log_file = app_settings.log_dir / f"{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        logger.add(
            str(log_file),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="14 days",
            encoding="utf-8",
            filter=sensitive_data_filter,
        )

    logger.info(f"Logging initialized with level: {app_settings.log_level}")

    # Intercept standard logging messages
    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            # Get corresponding Loguru level if it exists
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find caller from where originated the logged message
            frame, depth = logging.currentframe(), 2
            while frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(
                level, record.getMessage()
            )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logger.debug("Standard logging intercepted.")
