"""Tests for the incremental JSON reader and the TSV line reader."""

import json

import pytest

from jellyfin_stats_sync.importing.errors import JsonStreamError
from jellyfin_stats_sync.importing.stream import JsonStreamReader, iter_bytes
from jellyfin_stats_sync.importing.tsv import iter_lines


async def collect(data: bytes, chunk_size: int = 7, array_keys=()):
    reader = JsonStreamReader(iter_bytes(data, chunk_size), array_keys=array_keys)
    items = [item async for item in reader.items()]
    return reader, items


class TestJsonStreamReader:
    """Test element-by-element reading across chunk boundaries."""

    @pytest.mark.asyncio
    async def test_top_level_array(self):
        records = [{"Id": "a", "Name": 'quote " and [brackets]'}, {"Id": "b", "Nested": {"x": [1, 2, {"y": "}"}]}}]
        reader, items = await collect(json.dumps(records).encode())

        assert reader.root_type == "array"
        assert items == [(None, records[0]), (None, records[1])]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 64])
    async def test_chunk_sizes(self, chunk_size):
        """Splitting at any byte, including inside escapes and numbers, gives the same result."""
        records = [{"text": "back\\slash \"q\" é", "n": 123456789}, 12345, "plain", None, True]
        _, items = await collect(json.dumps(records, ensure_ascii=False).encode(), chunk_size=chunk_size)

        assert [element for _, element in items] == records

    @pytest.mark.asyncio
    async def test_object_with_array_key(self):
        document = {"exportInfo": {"version": "v2"}, "sessions": [{"id": "1"}, {"id": "2"}], "server": {"name": "x"}}
        reader, items = await collect(json.dumps(document).encode(), array_keys=("sessions",))

        assert reader.root_type == "object"
        assert items == [("sessions", {"id": "1"}), ("sessions", {"id": "2"})]
        assert reader.header == {"exportInfo": {"version": "v2"}, "server": {"name": "x"}}

    @pytest.mark.asyncio
    async def test_header_available_before_elements(self):
        """Members written before the array are decoded by the time the first element arrives."""
        document = b'{"exportInfo": {"version": "v2"}, "sessions": [{"id": "1"}]}'
        reader = JsonStreamReader(iter_bytes(document, 4), array_keys=("sessions",))

        async for _, element in reader.items():
            assert reader.header["exportInfo"] == {"version": "v2"}
            assert element == {"id": "1"}

    @pytest.mark.asyncio
    async def test_empty_inputs(self):
        _, items = await collect(b"")
        assert items == []
        _, items = await collect(b"  []  ")
        assert items == []
        _, items = await collect(b"{}")
        assert items == []

    @pytest.mark.asyncio
    async def test_byte_order_mark(self):
        _, items = await collect(b"\xef\xbb\xbf" + b'[{"a": 1}]')
        assert items == [(None, {"a": 1})]

    @pytest.mark.asyncio
    async def test_scalar_document(self):
        with pytest.raises(JsonStreamError):
            await collect(b"42")

    @pytest.mark.asyncio
    async def test_truncated_document(self):
        with pytest.raises(JsonStreamError):
            await collect(b'[{"a": 1}, {"b": ')

    @pytest.mark.asyncio
    async def test_missing_separator(self):
        with pytest.raises(JsonStreamError):
            await collect(b'[{"a": 1} {"b": 2}]')


class TestIterLines:
    """Test TSV line splitting."""

    @pytest.mark.asyncio
    async def test_lines_across_chunks(self):
        data = b"a\tb\r\n\n  \nc\td\ne\tf"
        lines = [line async for line in iter_lines(iter_bytes(data, 3))]

        assert lines == ["a\tb", "c\td", "e\tf"]


class TestElementArrayKeys:
    """Test descending into member arrays of top-level array elements."""

    @pytest.mark.asyncio
    async def test_wrapper_inside_array(self):
        document = [{"before": 1, "rows": [{"id": "1"}, {"id": "2"}], "after": 2}, {"id": "3"}]
        reader = JsonStreamReader(iter_bytes(json.dumps(document).encode(), 5), element_array_keys=("rows",))
        items = [item async for item in reader.items()]

        assert items == [("rows", {"id": "1"}), ("rows", {"id": "2"}), (None, {"id": "3"})]
        assert reader.streamed_keys == {"rows"}

    @pytest.mark.asyncio
    async def test_empty_wrapper_yields_nothing(self):
        reader = JsonStreamReader(iter_bytes(b'[{"rows": []}]'), element_array_keys=("rows",))
        items = [item async for item in reader.items()]

        assert items == []
        assert reader.streamed_keys == {"rows"}

    @pytest.mark.asyncio
    async def test_plain_objects_kept_whole(self):
        records = [{"id": "1", "nested": {"rows": "not an array"}, "list": [1, 2]}, 7]
        reader = JsonStreamReader(iter_bytes(json.dumps(records).encode(), 3), element_array_keys=("rows",))
        items = [item async for item in reader.items()]

        assert items == [(None, records[0]), (None, 7)]
        assert reader.streamed_keys == set()
