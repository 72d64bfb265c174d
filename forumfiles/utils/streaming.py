import urllib.parse
from typing import AsyncIterator

from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from forumfiles.models.file import File

CHUNK_SIZE = 1024 * 1024


def content_disposition(filename: str) -> str:
    quoted = urllib.parse.quote(filename, safe="")
    fallback = filename.encode("latin-1", "ignore").decode("latin-1").replace('"', "")
    return f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quoted}'


async def aiter_object(obj) -> AsyncIterator[bytes]:
    try:
        # blocking reads go through the threadpool
        while True:
            chunk = await run_in_threadpool(obj.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        await run_in_threadpool(obj.close)


def file_response(record: File, obj) -> StreamingResponse:
    headers = {"Content-Disposition": content_disposition(record.filename)}
    if record.size is not None:
        headers["Content-Length"] = str(record.size)
    return StreamingResponse(
        aiter_object(obj),
        media_type=record.content_type or "application/octet-stream",
        headers=headers,
    )
