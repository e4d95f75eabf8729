import datetime
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s.%(component)s - %(message)s"
LOG_FILENAME = "relay.log"
LOG_BACKUP_DAYS = 7

_configured = False


def _tz(name: str | None) -> datetime.tzinfo:
    if name:
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


def _log_dir(value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        # Relative to the project root, not the working directory.
        path = Path(__file__).resolve().parents[1] / path
    path.mkdir(parents=True, exist_ok=True)
    return path


class ZonedFormatter(logging.Formatter):
    """Formatter rendering `asctime` in LOG_TIMEZONE (system timezone when unset)."""

    def __init__(self, fmt: str, *, timezone_name: str | None = None) -> None:
        super().__init__(fmt)
        self.tz = _tz(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        moment = datetime.datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return moment.strftime(datefmt)
        return moment.isoformat(timespec="milliseconds")


def component_for(record: logging.LogRecord) -> str:
    """
    Name the relay component a record came from.

    All relay modules share the `chatrelay` logger, so the component is
    derived from the source path of the call site.
    """
    if (record.name or "").startswith("uvicorn"):
        return "server"

    path = (record.pathname or "").replace("\\", "/")
    components = (
        ("/chatrelay/api/", "api"),
        ("/chatrelay/routes.py", "api"),
        ("/conversation/session.py", "pool"),
        ("/conversation/manager.py", "pool"),
        ("/chatrelay/conversation/", "conversation"),
        ("/chatrelay/upstream/", "upstream"),
        ("/chatrelay/services/", "services"),
        ("/chatrelay/storage/", "storage"),
        ("/chatrelay/redis_client.py", "storage"),
    )
    for marker, component in components:
        if marker in path:
            return component
    return "app"


class ComponentFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "component", None):
            record.component = component_for(record)
        return True


def setup_logging() -> None:
    """
    Configure process logging once.

    `chatrelay` records are written to LOG_DIR/relay.log, rotated at
    midnight; every record (uvicorn included) also goes to the console.
    """
    global _configured
    if _configured:
        return

    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    formatter = ZonedFormatter(LOG_FORMAT, timezone_name=settings.log_timezone)
    components = ComponentFilter()

    file_handler = TimedRotatingFileHandler(
        _log_dir(settings.log_dir) / LOG_FILENAME,
        when="midnight",
        backupCount=LOG_BACKUP_DAYS,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(components)

    relay_logger = logging.getLogger("chatrelay")
    relay_logger.setLevel(level)
    relay_logger.addHandler(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.addFilter(components)
        root.addHandler(console)

    _configured = True


logger = logging.getLogger("chatrelay")
