import os
import sys
import time
from contextvars import ContextVar
from enum import Enum
from typing import Any, ClassVar, NamedTuple

from .. import config
from .primitives import TPrimitive

ERR = sys.stderr

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
COLOR: bool = "FORCE_COLOR" in os.environ or (not NO_COLOR and ERR.isatty())


class Term:
	BOLD: ClassVar[str] = "\033[1m" if COLOR else ""
	RESET: ClassVar[str] = "\033[0m" if COLOR else ""

	@staticmethod
	def Color(color: int) -> str:
		return f"\033[0;38;5;{color}m" if COLOR else ""


LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="thenrequest")


class LogType(Enum):
	Message = 0
	Event = 20


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Warning = 30
	Error = 40
	Exception = 50

	@staticmethod
	def Parse(name: str | None, default: "LogLevel") -> "LogLevel":
		"""Parses a level name like `debug` or `Warning`."""
		for level in LogLevel:
			if name and level.name.lower() == name.strip().lower():
				return level
		return default


LOG_LEVEL_COLOR = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}

# Entries below that level are built but not written
LogThreshold: ContextVar[LogLevel] = ContextVar(
	"LogThreshold",
	default=LogLevel.Parse(config.LOG_LEVEL, LogLevel.Warning),
)


class LogEntry(NamedTuple):
	origin: str
	time: float
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: TPrimitive | None = None
	context: dict[str, TPrimitive] | None = None


def formatData(value: Any) -> str:
	if value is None or value == () or value == [] or value == {}:
		return "◌"
	elif isinstance(value, dict):
		return " ".join(
			f"{Term.BOLD}{k}{Term.RESET}={formatData(v)}" for k, v in value.items()
		)
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	else:
		return str(value)


def logged(level: LogLevel) -> bool:
	"""Tells if entries of the given level are currently written. This
	is used to guard against building entries when not necessary."""
	return level.value >= LogThreshold.get().value


def send(entry: LogEntry) -> LogEntry:
	if not logged(entry.level):
		return entry
	clr: str = Term.Color(LOG_LEVEL_COLOR[entry.level])
	if entry.type == LogType.Event:
		ERR.write(
			f"{clr}{Term.BOLD}[{entry.origin}] {entry.name}{Term.RESET} {formatData(entry.value)} {formatData(entry.context)}{Term.RESET}\n"
		)
	else:
		ERR.write(
			f"{clr}{Term.BOLD}[{entry.origin}]{Term.RESET} {entry.message} {formatData(entry.context)}{Term.RESET}\n"
		)
	ERR.flush()
	return entry


def entry(
	*,
	origin: str | None = None,
	at: float | None = None,
	type: LogType = LogType.Message,
	level: LogLevel = LogLevel.Info,
	message: str | None = None,
	name: str | None = None,
	value: TPrimitive | None = None,
	context: dict[str, TPrimitive],
) -> LogEntry:
	return LogEntry(
		origin=origin or LogOrigin.get(),
		time=time.time() if at is None else at,
		type=type,
		level=level,
		message=message,
		name=name,
		value=value,
		context=context,
	)


def debug(
	message: str,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			message=message,
			level=LogLevel.Debug,
			origin=origin,
			at=at,
			context=context,
		)
	)


def warning(
	message: str,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			message=message,
			level=LogLevel.Warning,
			origin=origin,
			at=at,
			context=context,
		)
	)


def event(
	event: str,
	value: Any = None,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			name=event,
			value=value,
			type=LogType.Event,
			level=LogLevel.Debug,
			origin=origin,
			at=at,
			context=context,
		)
	)


# EOF
