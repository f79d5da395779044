import logging
import logging.handlers
from rich.logging import RichHandler
from rich.console import Console

from .config import Settings

# Transfer libraries log every request/part at INFO or DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")


def _level_number(level: str) -> int:
    return logging.getLevelNamesMapping()[level.upper()]


def _console_handler(settings: Settings) -> RichHandler:
    console = Console(width=settings.console_width)
    handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setLevel(_level_number(settings.effective_console_log_level))
    return handler


def _file_handler(settings: Settings) -> logging.Handler:
    file_format = (
        "%(asctime)s - %(levelname)s - "
        "%(filename)s:%(lineno)d in %(funcName)s() - "
        "%(message)s"
    )
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        interval=1,
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    handler.setLevel(_level_number(settings.log_level))
    handler.setFormatter(logging.Formatter(file_format))
    return handler


def setup_logging(settings: Settings) -> None:
    """
    Console gets rich output at its own level so a long run can stay quiet on
    the terminal while the rotating file keeps the full per-job detail.
    """
    settings.log_directory.mkdir(parents=True, exist_ok=True)

    console_handler = _console_handler(settings)
    file_handler = _file_handler(settings)

    root_logger = logging.getLogger()
    root_logger.setLevel(min(console_handler.level, file_handler.level))

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.info(
        f"[bold green]Logging initialized[/] - "
        f"File: [cyan]{settings.log_file_path}[/] ([yellow]{settings.log_level}[/]), "
        f"Console: [yellow]{settings.effective_console_log_level}[/], "
        f"Retention: [blue]{settings.log_retention_days}[/] days"
    )
