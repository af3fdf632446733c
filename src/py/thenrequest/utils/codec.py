import zlib
from abc import ABC, abstractmethod


class BytesTransform(ABC):
	"""An abstract bytes transform."""

	@abstractmethod
	def feed(self, chunk: bytes) -> bytes:
		"""Feeds bytes to the transform, returns what could be produced."""

	@abstractmethod
	def flush(self) -> bytes:
		"""Returns whatever the transform still buffers."""


class GZipDecoder(BytesTransform):
	"""Decodes `gzip` (or zlib-wrapped `deflate`) content."""

	__slots__ = ["decompressor"]

	def __init__(self) -> None:
		super().__init__()
		# NOTE: +32 auto-detects the gzip or zlib header
		self.decompressor = zlib.decompressobj(wbits=zlib.MAX_WBITS | 32)

	def feed(self, chunk: bytes) -> bytes:
		return self.decompressor.decompress(chunk)

	def flush(self) -> bytes:
		return self.decompressor.flush()


class DeflateDecoder(BytesTransform):
	"""Decodes `deflate` content, which servers send either zlib-wrapped
	or raw."""

	__slots__ = ["decompressor", "started"]

	def __init__(self) -> None:
		super().__init__()
		self.decompressor = zlib.decompressobj()
		self.started: bool = False

	def feed(self, chunk: bytes) -> bytes:
		if not self.started and chunk:
			self.started = True
			try:
				return self.decompressor.decompress(chunk)
			except zlib.error:
				self.decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
		return self.decompressor.decompress(chunk)

	def flush(self) -> bytes:
		return self.decompressor.flush()


def decoder(contentEncoding: str | None) -> BytesTransform | None:
	"""Returns the decoder for the given `Content-Encoding`, if supported."""
	encoding = (contentEncoding or "").strip().lower()
	if encoding in ("gzip", "x-gzip"):
		return GZipDecoder()
	elif encoding == "deflate":
		return DeflateDecoder()
	else:
		return None


# SEE: https://httpwg.org/specs/rfc9112.html#chunked.encoding
def encodeChunk(chunk: bytes) -> bytes:
	"""Encodes a chunk for `Transfer-Encoding: chunked`, an empty chunk
	being the last one."""
	return f"{len(chunk):X}\r\n".encode("ascii") + chunk + b"\r\n"


# EOF
