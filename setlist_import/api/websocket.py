"""WebSocket endpoint streaming one import's progress.

# ─── HOW WEBSOCKET PROGRESS WORKS ─────────────────────────────────────
#
#   Client                              Server
#   ──────                              ──────
#   connect /ws/imports/{job_id} ──→   accept, open a bus channel
#                                ←──   last persisted snapshot (or a
#                                      "pending" stub when none exists)
#                                ←──   every progress event for the job
#                                ←──   terminal event, then close
#   disconnect                   ──→   channel closed
#
# Events are read from a bounded ProgressBus channel.  A slow client only
# loses its own oldest events; the import itself is never slowed down.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from setlist_import.models.import_job import ImportStage
from setlist_import.pipeline.progress_bus import ProgressBus
from setlist_import.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_TERMINAL_STAGES = frozenset({ImportStage.COMPLETED.value, ImportStage.FAILED.value})


def _is_terminal(event: dict[str, Any]) -> bool:
    return event.get("stage") in _TERMINAL_STAGES


async def websocket_progress(websocket: WebSocket, job_id: str) -> None:
    """Stream progress for *job_id* until it finishes or the client leaves.

    Parameters
    ----------
    websocket:
        The WebSocket connection managed by FastAPI / Starlette.
    job_id:
        The import job to follow.
    """
    progress_bus: ProgressBus = websocket.app.state.progress_bus

    await websocket.accept()
    channel = progress_bus.open_channel(job_id)
    _logger.info("websocket_connected", job_id=job_id)

    async def _pump() -> None:
        while True:
            event = await channel.get()
            await websocket.send_json(event)
            if _is_terminal(event):
                return

    async def _drain_client() -> None:
        # Keeps reading so a client disconnect is noticed.
        while True:
            await websocket.receive_text()

    tasks: list[asyncio.Task[None]] = []
    try:
        job = await progress_bus.get_status(job_id)
        snapshot = job.to_event() if job else {"job_id": job_id, "stage": None, "progress": 0.0}
        await websocket.send_json(snapshot)
        if _is_terminal(snapshot):
            return

        tasks = [asyncio.create_task(_pump()), asyncio.create_task(_drain_client())]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc

    except WebSocketDisconnect:
        _logger.info("websocket_disconnected", job_id=job_id)

    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        progress_bus.close_channel(job_id, channel)
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close()
        _logger.debug("websocket_channel_closed", job_id=job_id)
