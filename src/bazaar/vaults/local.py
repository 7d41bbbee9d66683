"""JSONFileVault: a LedgerVault backed by a single local JSON file.

Writes go to a sibling ``.tmp`` file that then replaces the snapshot, so a
crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path


class JSONFileVault:
    """Implements the bazaar ``LedgerVault`` protocol on the local filesystem."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def store_snapshot(self, snapshot_json: str) -> str:
        await asyncio.to_thread(self._write, snapshot_json)
        return str(self._path)

    async def fetch_snapshot(self) -> str | None:
        return await asyncio.to_thread(self._read)

    def _write(self, snapshot_json: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(snapshot_json, encoding="utf-8")
        os.replace(tmp, self._path)

    def _read(self) -> str | None:
        if not self._path.exists():
            return None
        return self._path.read_text(encoding="utf-8")
