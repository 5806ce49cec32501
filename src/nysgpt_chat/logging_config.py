import re
import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = (
    "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

DEFAULT_LOG_PATH = ".nysgpt/nysgpt-chat.log"

# Supabase access tokens are JWTs; anon keys and user tokens both match.
_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(apikey[\"']?\s*[:=]\s*[\"']?)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r"()eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
)


def redact_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1[redacted]", text)
    return text


def _redact_record(record: dict) -> None:
    record["message"] = redact_secrets(record["message"])


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """Logs to stderr so streamed answers on stdout stay readable."""

    def __init__(self, colorize: bool | None = None, package_only: bool = False):
        self._colorize = colorize
        self._package_only = package_only

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            format=_CONSOLE_FORMAT,
            colorize=self._colorize,
            filter="nysgpt_chat" if self._package_only else None,
        )

    def describe(self, level: str) -> str:
        scope = ", nysgpt_chat only" if self._package_only else ""
        return f"console (stderr, {level}{scope})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = DEFAULT_LOG_PATH,
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
        )

    def describe(self, level: str) -> str:
        kind = "json file" if self._serialize else "file"
        return f"{kind} ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

# Answers stream to stdout, so the console only carries problems by default.
_DEFAULT_CONSUMERS = [
    {"Type": "console", "Level": "WARNING"},
    {"Type": "file"},
]


def _option_name(key: str) -> str:
    """``Rotation`` -> ``rotation``, ``PackageOnly`` -> ``package_only``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key.strip()).lower()


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with the configured consumers and describe each one.

    Consumer entries use the same PascalCase keys as the rest of ``config.json``
    (``Type``, ``Level``, ``Path`` ...); lowercase keys are accepted too.
    Every message is passed through :func:`redact_secrets` before any sink sees it.
    """
    logger.remove()
    logger.configure(patcher=_redact_record)

    if consumers is None:
        consumers = _DEFAULT_CONSUMERS

    descriptions: list[str] = []
    for config in consumers:
        options = {_option_name(k): v for k, v in config.items()}
        sink_type = str(options.pop("type", "")).strip().lower()
        sink_level = options.pop("level", level)
        if isinstance(sink_level, str):
            sink_level = sink_level.upper()
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        try:
            consumer = cls(**options)
        except TypeError as ex:
            logger.warning(f"Ignoring {sink_type} log consumer with invalid options {sorted(options)}: {ex}")
            continue
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
