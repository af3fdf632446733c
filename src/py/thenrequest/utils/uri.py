from typing import Any, Iterator, Mapping
from urllib.parse import parse_qsl, quote, urljoin, urlparse


class URI:
	"""A parsed absolute URL, giving what a connection needs: the host,
	port, whether TLS is used and the request target."""

	__slots__ = ("scheme", "host", "port", "path", "query", "fragment")

	@classmethod
	def Parse(cls, link: "URI|str") -> "URI":
		if isinstance(link, URI):
			return link
		res = urlparse(link)
		if res.scheme not in ("http", "https") or not res.hostname:
			raise ValueError(f"Expected an absolute http(s) URL, got: {link!r}")
		return URI(
			scheme=res.scheme,
			host=res.hostname,
			port=res.port,
			path=res.path or "/",
			query=res.query or None,
			fragment=res.fragment or None,
		)

	def __init__(
		self,
		*,
		scheme: str,
		host: str,
		port: int | None = None,
		path: str = "/",
		query: str | None = None,
		fragment: str | None = None,
	):
		self.scheme: str = scheme
		self.host: str = host
		self.port: int | None = port
		self.path: str = path
		self.query: str | None = query
		self.fragment: str | None = fragment

	@property
	def ssl(self) -> bool:
		return self.scheme == "https"

	@property
	def actualPort(self) -> int:
		return self.port if self.port is not None else 443 if self.ssl else 80

	@property
	def target(self) -> str:
		"""The request target, as sent in the request line."""
		return f"{self.path}?{self.query}" if self.query else self.path

	@property
	def authority(self) -> str:
		"""The value of the `Host` header, which omits default ports."""
		return (
			self.host
			if self.port is None or self.port == (443 if self.ssl else 80)
			else f"{self.host}:{self.port}"
		)

	def resolve(self, location: str) -> "URI":
		"""Resolves a (possibly relative) `Location` against this URI."""
		return URI.Parse(urljoin(str(self), location))

	def __str__(self) -> str:
		return f"{self.scheme}://{self.authority}{self.target}{f'#{self.fragment}' if self.fragment else ''}"


# -----------------------------------------------------------------------------
#
# QUERY STRING
#
# -----------------------------------------------------------------------------


def iterQuery(value: Any, prefix: str) -> Iterator[tuple[str, str]]:
	"""Flattens a query value, nested mappings using the `a[b]=c`
	notation and sequences repeating the key."""
	if isinstance(value, Mapping):
		for k, v in value.items():
			yield from iterQuery(v, f"{prefix}[{k}]")
	elif isinstance(value, (list, tuple)):
		for v in value:
			yield from iterQuery(v, prefix)
	elif value is None:
		yield prefix, ""
	elif isinstance(value, bool):
		yield prefix, "true" if value else "false"
	elif isinstance(value, bytes):
		yield prefix, value.decode("utf8")
	else:
		yield prefix, str(value)


def formatQuery(query: Mapping[str, Any]) -> str:
	return "&".join(
		f"{quote(k, safe='[]')}={quote(v, safe='')}"
		for name, value in query.items()
		for k, v in iterQuery(value, str(name))
	)


def mergeQuery(url: str, query: Mapping[str, Any]) -> str:
	"""Merges the `query` parameters in the query string of `url`,
	overriding parameters that are already there. Spaces are encoded
	as `%20`, and the fragment is preserved."""
	start, sep, rest = url.partition("?")
	if not sep:
		start, hsep, fragment = url.partition("#")
		existing = ""
	else:
		existing, hsep, fragment = rest.partition("#")
	merged: dict[str, Any] = {}
	for k, v in parse_qsl(existing, keep_blank_values=True):
		merged[k] = (
			v
			if k not in merged
			else (merged[k] + [v] if isinstance(merged[k], list) else [merged[k], v])
		)
	merged.update(query)
	qs = formatQuery(merged)
	return f"{start}{'?' + qs if qs else ''}{'#' + fragment if hsep else ''}"


# EOF
