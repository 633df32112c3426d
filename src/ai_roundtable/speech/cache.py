"""
AudioCache -- write-once MP3 files keyed by (conversation, round, model).

    <data-dir>/audio/<conversation-id>/<round>-<model>.mp3

Path components are sanitized to [A-Za-z0-9_-]. When sanitizing changes a
component, a short digest of the original is appended so distinct keys
never share a file. A missing file is a cache miss, not an error. Writes
are fire-and-forget: the audio is returned to the caller before the write
lands, and a failed write is only logged. There is no eviction, size bound
or TTL.
"""

import asyncio
import hashlib
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_component(value: str) -> str:
    cleaned = _UNSAFE.sub("_", value)
    if cleaned != value or not cleaned:
        digest = hashlib.sha256(value.encode()).hexdigest()[:8]
        cleaned = f"{cleaned}-{digest}"
    return cleaned


class AudioCache:
    """Flat-file audio cache under <data-dir>/audio."""

    def __init__(self, audio_dir: Path):
        self._audio_dir = audio_dir
        self._pending: set[asyncio.Task] = set()

    def path_for(self, conversation_id: str, round_number: int, model: str) -> Path:
        return (
            self._audio_dir
            / sanitize_component(conversation_id)
            / f"{int(round_number)}-{sanitize_component(model)}.mp3"
        )

    async def read(self, conversation_id: str, round_number: int, model: str) -> bytes | None:
        path = self.path_for(conversation_id, round_number, model)
        try:
            audio = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        logger.debug(f"[AudioCache] Hit {path.parent.name}/{path.name} ({len(audio)} bytes)")
        return audio

    def write_in_background(
        self, conversation_id: str, round_number: int, model: str, audio: bytes
    ) -> asyncio.Task:
        """Schedule the cache write and return immediately."""
        path = self.path_for(conversation_id, round_number, model)
        task = asyncio.create_task(self._write(path, audio))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_for_writes(self) -> None:
        """Wait for scheduled writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def _write(self, path: Path, audio: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_file, path, audio)
            logger.debug(f"[AudioCache] Stored {path.parent.name}/{path.name}")
        except OSError as e:
            logger.warning(f"[AudioCache] Write failed for {path.name}: {e}")

    @staticmethod
    def _write_file(path: Path, audio: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".mp3.tmp")
        tmp.write_bytes(audio)
        tmp.replace(path)
