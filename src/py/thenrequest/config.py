from os import getenv

from .utils.io import DEFAULT_ENCODING  # NOQA: F401


def getfloat(name: str, default: float | None) -> float | None:
	value = getenv(name)
	return float(value) if value else default


# Level name (`debug`, `info`, `warning`, `error`), entries below are not written
LOG_LEVEL: str = getenv("THENREQUEST_LOG_LEVEL", "warning")

# Default timeout (in seconds) for receiving the response head, none if unset
TIMEOUT: float | None = getfloat("THENREQUEST_TIMEOUT", None)

MAX_REDIRECTS: int = int(getenv("THENREQUEST_MAX_REDIRECTS", 10))

MAX_RETRIES: int = int(getenv("THENREQUEST_MAX_RETRIES", 5))

# Delay between retries, in seconds
RETRY_DELAY: float = getfloat("THENREQUEST_RETRY_DELAY", 0.2) or 0.0

# EOF
