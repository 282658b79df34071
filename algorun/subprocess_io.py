"""Bounded I/O with child processes."""

from __future__ import annotations

import asyncio

_CHUNK = 64 * 1024


def kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def communicate_capped(
    proc: asyncio.subprocess.Process,
    data: bytes | None = None,
    limit: int = 1024 * 1024,
) -> tuple[bytes, bytes, bool]:
    """Like ``proc.communicate()`` but stops collecting after *limit* bytes.

    stdout and stderr share the budget. When it is exceeded the child is
    killed and the third element of the result is True; the bytes collected
    up to that point are still returned.
    """
    out: list[bytes] = []
    err: list[bytes] = []
    total = 0
    exceeded = False

    async def pump(stream: asyncio.StreamReader | None, chunks: list[bytes]) -> None:
        nonlocal total, exceeded
        if stream is None:
            return
        while not exceeded:
            chunk = await stream.read(_CHUNK)
            if not chunk:
                return
            if total + len(chunk) > limit:
                chunks.append(chunk[: max(limit - total, 0)])
                total = limit
                exceeded = True
                kill(proc)
                return
            total += len(chunk)
            chunks.append(chunk)

    async def feed() -> None:
        if proc.stdin is None:
            return
        try:
            if data:
                proc.stdin.write(data)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            pass  # the child exited without reading all of its input
        finally:
            proc.stdin.close()

    await asyncio.gather(feed(), pump(proc.stdout, out), pump(proc.stderr, err))
    await proc.wait()
    return b"".join(out), b"".join(err), exceeded
