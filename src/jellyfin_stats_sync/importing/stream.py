"""Incremental JSON array reader for large uploads.

Only one array element is held in memory at a time (plus whatever is left
of the current read chunk), so exports of hundreds of megabytes can be
imported without parsing the whole document.
"""

import codecs
import json
import re
from collections.abc import AsyncIterator, Collection
from typing import Any

from .errors import JsonStreamError

_WHITESPACE = " \t\r\n"
_STRUCTURAL = re.compile(r'["\\\[\]{}]')


class _ContainerScanner:
    """Finds where an object or array ends, across chunk boundaries.

    Offsets are relative to the start of the value so the buffer in front of
    it can be compacted between reads.
    """

    def __init__(self) -> None:
        self.offset = 0
        self.depth = 0
        self.in_string = False
        self.escaped = False

    def feed(self, buf: str, start: int) -> int | None:
        """Scan ``buf`` from ``start``; returns the absolute end index once closed."""
        i = start + self.offset
        n = len(buf)
        if self.escaped and i < n:
            self.escaped = False
            i += 1

        while i < n:
            match = _STRUCTURAL.search(buf, i)
            if match is None:
                i = n
                break
            ch = match.group()
            i = match.end()
            if self.in_string:
                if ch == "\\":
                    if i < n:
                        i += 1
                    else:
                        self.escaped = True
                elif ch == '"':
                    self.in_string = False
            elif ch == '"':
                self.in_string = True
            elif ch in "[{":
                self.depth += 1
            elif ch in "]}":
                self.depth -= 1
                if self.depth == 0:
                    self.offset = i - start
                    return i

        self.offset = i - start
        return None


class JsonStreamReader:
    """Yields array elements from a JSON document delivered as byte chunks.

    A top-level array yields ``(None, element)`` per element. A top-level
    object yields ``(key, element)`` for the elements of any member array
    whose key is listed in ``array_keys``; every other member is decoded
    whole and kept in :attr:`header`.

    With ``element_array_keys``, objects inside a top-level array are walked
    member by member too: elements of a listed member array are yielded as
    ``(key, element)`` and the rest of that object is dropped. Objects
    without such a member are yielded whole as ``(None, element)``.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        array_keys: Collection[str] = (),
        element_array_keys: Collection[str] = (),
    ):
        self._chunks = chunks
        self._array_keys = set(array_keys)
        self._element_array_keys = set(element_array_keys)
        self._decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
        self._json = json.JSONDecoder()
        self._buf = ""
        self._pos = 0
        self._eof = False
        self.header: dict[str, Any] = {}
        self.root_type: str | None = None
        # Listed keys whose array has been entered, even if it was empty
        self.streamed_keys: set[str] = set()

    async def _fill(self) -> bool:
        """Read the next chunk, compacting consumed text. False at end of input."""
        if self._eof:
            return False
        if self._pos:
            self._buf = self._buf[self._pos :]
            self._pos = 0
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._eof = True
            self._buf += self._decoder.decode(b"", final=True)
            return False
        self._buf += self._decoder.decode(chunk)
        return True

    async def _peek(self) -> str:
        """Skip whitespace and return the next character, or "" at end of input."""
        while True:
            while self._pos < len(self._buf) and self._buf[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos < len(self._buf):
                return self._buf[self._pos]
            if not await self._fill():
                return ""

    async def _expect(self, expected: str) -> None:
        ch = await self._peek()
        if ch != expected:
            found = repr(ch) if ch else "end of input"
            raise JsonStreamError(f"Expected '{expected}' but found {found}")
        self._pos += 1

    async def _read_value(self) -> Any:
        ch = await self._peek()
        if not ch:
            raise JsonStreamError("Unexpected end of JSON input")

        if ch in "[{":
            scanner = _ContainerScanner()
            while True:
                end = scanner.feed(self._buf, self._pos)
                if end is not None:
                    break
                if not await self._fill():
                    raise JsonStreamError("Unexpected end of JSON input")
            text = self._buf[self._pos : end]
            self._pos = end
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                raise JsonStreamError(f"Invalid JSON: {e}") from e

        # Scalars: a number at the end of the buffer may still continue in the next chunk
        while True:
            try:
                value, end = self._json.raw_decode(self._buf, self._pos)
            except json.JSONDecodeError as e:
                if self._eof:
                    raise JsonStreamError(f"Invalid JSON: {e}") from e
            else:
                if end < len(self._buf) or self._eof:
                    self._pos = end
                    return value
            await self._fill()

    async def _close_or_continue(self, close: str, container: str) -> bool:
        """Consume ',' (False) or the closing bracket (True) after a value."""
        ch = await self._peek()
        if ch == ",":
            self._pos += 1
            return False
        if ch == close:
            self._pos += 1
            return True
        found = repr(ch) if ch else "end of input"
        raise JsonStreamError(f"Expected ',' or '{close}' in {container} but found {found}")

    async def _iter_array(self) -> AsyncIterator[Any]:
        """Elements of the array whose '[' is the next character."""
        await self._expect("[")
        if await self._peek() == "]":
            self._pos += 1
            return
        while True:
            yield await self._read_value()
            if await self._close_or_continue("]", "array"):
                return

    async def _iter_members(
        self,
        members: dict[str, Any],
        stream_keys: set[str],
        entered: set[str],
    ) -> AsyncIterator[tuple[str, Any]]:
        """Walk the object whose '{' is the next character.

        Elements of member arrays listed in ``stream_keys`` are yielded one at
        a time and their keys added to ``entered``; every other member is
        decoded whole into ``members``.
        """
        await self._expect("{")
        if await self._peek() == "}":
            self._pos += 1
            return
        while True:
            if await self._peek() != '"':
                raise JsonStreamError("Expected a string key in object")
            key = await self._read_value()
            await self._expect(":")
            if key in stream_keys and await self._peek() == "[":
                entered.add(key)
                self.streamed_keys.add(key)
                async for element in self._iter_array():
                    yield key, element
            else:
                members[key] = await self._read_value()
            if await self._close_or_continue("}", "object"):
                return

    async def _iter_elements(self) -> AsyncIterator[tuple[str | None, Any]]:
        """Elements of the top-level array, descending into listed member arrays."""
        await self._expect("[")
        if await self._peek() == "]":
            self._pos += 1
            return
        while True:
            if self._element_array_keys and await self._peek() == "{":
                members: dict[str, Any] = {}
                entered: set[str] = set()
                async for key, element in self._iter_members(members, self._element_array_keys, entered):
                    yield key, element
                if not entered:
                    yield None, members
            else:
                yield None, await self._read_value()
            if await self._close_or_continue("]", "array"):
                return

    async def items(self) -> AsyncIterator[tuple[str | None, Any]]:
        ch = await self._peek()
        if not ch:
            return

        if ch == "[":
            self.root_type = "array"
            async for key, element in self._iter_elements():
                yield key, element
            return

        if ch != "{":
            raise JsonStreamError("Expected a JSON array or object at the top level")

        self.root_type = "object"
        async for key, element in self._iter_members(self.header, self._array_keys, set()):
            yield key, element


async def iter_bytes(data: bytes, chunk_size: int = 65536) -> AsyncIterator[bytes]:
    """Chunked async view over an in-memory payload."""
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]
