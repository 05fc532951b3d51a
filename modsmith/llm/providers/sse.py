"""
Server-Sent Events framing shared by the HTTP providers.

Each SSE event has the form::

    data: {json}\\n\\n

An event may span several ``data:`` lines; they are joined with ``\\n`` and
the event is dispatched at the blank line that ends it.  Comment lines start
with ``:`` and are skipped.  Bytes are decoded with an incremental UTF-8
decoder so a multi-byte character split across network chunks arrives intact.
"""

from __future__ import annotations

import codecs
from typing import AsyncIterator

import httpx


def _data_of(line: str) -> str | None:
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):]
    # A single optional space follows the colon.
    if data.startswith(" "):
        data = data[1:]
    return data


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the joined data payload of every event in arrival order."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    pending: list[str] = []
    async for raw_bytes in response.aiter_bytes():
        buffer += decoder.decode(raw_bytes)

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = line.rstrip("\r")
            if not line:
                if pending:
                    yield "\n".join(pending)
                    pending = []
                continue
            data = _data_of(line)
            if data is not None:
                pending.append(data)

    buffer += decoder.decode(b"", final=True)
    data = _data_of(buffer.rstrip("\r"))
    if data is not None:
        pending.append(data)
    if pending:
        yield "\n".join(pending)
