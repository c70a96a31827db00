"""Line reader for tab-separated uploads."""

import codecs
from collections.abc import AsyncIterator


async def iter_lines(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Yield non-blank lines decoded from a byte stream."""
    decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
    pending = ""
    async for chunk in chunks:
        pending += decoder.decode(chunk)
        *lines, pending = pending.split("\n")
        for line in lines:
            if line.strip():
                yield line.rstrip("\r")
    pending += decoder.decode(b"", final=True)
    for line in pending.split("\n"):
        if line.strip():
            yield line.rstrip("\r")
