from typing import Iterator, Mapping, TypeAlias

THeaderValue: TypeAlias = str | list[str]
THeaders: TypeAlias = dict[str, THeaderValue]


class Headers:
	"""A case-insensitive set of headers. Lookups ignore the case, while
	iteration gives back the name as it was last set."""

	__slots__ = ["_values"]

	@staticmethod
	def Make(headers: "Headers|Mapping[str, THeaderValue]|None") -> "Headers":
		"""Creates a copy of the given headers, the original mapping is
		never modified."""
		res = Headers()
		if headers is None:
			pass
		elif isinstance(headers, Headers):
			res._values.update(headers._values)
		elif isinstance(headers, Mapping):
			for k, v in headers.items():
				res.set(k, v)
		else:
			raise TypeError(f"Headers must be a mapping, got: {type(headers)}")
		return res

	def __init__(self) -> None:
		# Maps the lower-cased name to the (name, value) pair
		self._values: dict[str, tuple[str, THeaderValue]] = {}

	def has(self, name: str) -> bool:
		return name.lower() in self._values

	def get(
		self, name: str, default: THeaderValue | None = None
	) -> THeaderValue | None:
		v = self._values.get(name.lower())
		return default if v is None else v[1]

	def set(self, name: str, value: THeaderValue | int) -> "Headers":
		self._values[name.lower()] = (
			name,
			value if isinstance(value, list) else str(value),
		)
		return self

	def delete(self, name: str) -> bool:
		return self._values.pop(name.lower(), None) is not None

	def items(self) -> Iterator[tuple[str, THeaderValue]]:
		for name, value in self._values.values():
			yield name, value

	def asDict(self) -> THeaders:
		return {k: v for k, v in self.items()}

	def __contains__(self, name: object) -> bool:
		return isinstance(name, str) and self.has(name)

	def __getitem__(self, name: str) -> THeaderValue:
		return self._values[name.lower()][1]

	def __setitem__(self, name: str, value: THeaderValue) -> None:
		self.set(name, value)

	def __delitem__(self, name: str) -> None:
		del self._values[name.lower()]

	def __iter__(self) -> Iterator[str]:
		for name, _ in self._values.values():
			yield name

	def __len__(self) -> int:
		return len(self._values)

	def __eq__(self, other: object) -> bool:
		if isinstance(other, Headers):
			return {k: v[1] for k, v in self._values.items()} == {
				k: v[1] for k, v in other._values.items()
			}
		elif isinstance(other, Mapping):
			return self == Headers.Make(other)
		else:
			return NotImplemented

	def __str__(self) -> str:
		return f"Headers({self.asDict()})"

	__repr__ = __str__


def mergeHeaders(headers: Headers, extra: Mapping[str, THeaderValue]) -> Headers:
	"""Sets each of the `extra` headers that is not already in `headers`,
	so that the headers given by the caller always win."""
	for k, v in extra.items():
		if not headers.has(k):
			headers.set(k, v)
	return headers


# EOF
