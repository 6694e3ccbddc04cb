"""Durable profile persistence (JSON + fcntl.flock + atomic write)."""

import asyncio
import fcntl
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

from accuracy_engine.exceptions import StoreError
from accuracy_engine.models.accuracy import AggregatedProfile, HistoricalContext

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


class ProfileStore(Protocol):
    """Key-value document store holding the system of record per user."""

    async def find_by_user(self, user_id: str) -> AggregatedProfile | None: ...

    async def upsert(self, user_id: str, profile: AggregatedProfile) -> bool: ...

    async def find_historical(self, user_id: str) -> HistoricalContext | None: ...

    async def upsert_historical(self, user_id: str, context: HistoricalContext) -> bool: ...


class JsonProfileStore:
    """One JSON document per user under ``profiles_dir``.

    Each document has a ``profile`` section (AggregatedProfile) and a
    ``historical`` section (HistoricalContext). File I/O runs in a worker
    thread so the event loop never blocks.

    Args:
        profiles_dir: Directory holding the documents.
    """

    def __init__(self, profiles_dir: Path):
        self.profiles_dir = Path(profiles_dir)
        self.profiles_dir.mkdir(parents=True, exist_ok=True)

    def get_profile_path(self, user_id: str) -> Path:
        if not _USER_ID_PATTERN.match(user_id):
            raise StoreError(f"Invalid user id for file store: {user_id!r}")
        return self.profiles_dir / f"{user_id}.json"

    def _read_document(self, user_id: str) -> dict[str, Any]:
        path = self.get_profile_path(user_id)
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
                fcntl.flock(f, fcntl.LOCK_UN)
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to read profile {user_id}: {e}") from e
        return data

    def _write_section(self, user_id: str, section: str, payload: dict[str, Any]) -> None:
        path = self.get_profile_path(user_id)
        lock_path = path.with_suffix(".lock")
        try:
            with open(lock_path, "w") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                data = self._read_document(user_id)
                data[section] = payload
                with tempfile.NamedTemporaryFile(
                    "w", dir=path.parent, delete=False, suffix=".json", encoding="utf-8"
                ) as tmp:
                    json.dump(data, tmp, default=str)
                os.replace(tmp.name, path)
        except OSError as e:
            raise StoreError(f"Failed to write profile {user_id}: {e}") from e

    async def find_by_user(self, user_id: str) -> AggregatedProfile | None:
        data = await asyncio.to_thread(self._read_document, user_id)
        if "profile" not in data:
            return None
        return AggregatedProfile.model_validate(data["profile"])

    async def upsert(self, user_id: str, profile: AggregatedProfile) -> bool:
        await asyncio.to_thread(
            self._write_section, user_id, "profile", profile.model_dump(mode="json")
        )
        return True

    async def find_historical(self, user_id: str) -> HistoricalContext | None:
        data = await asyncio.to_thread(self._read_document, user_id)
        if "historical" not in data:
            return None
        return HistoricalContext.model_validate(data["historical"])

    async def upsert_historical(self, user_id: str, context: HistoricalContext) -> bool:
        await asyncio.to_thread(
            self._write_section, user_id, "historical", context.model_dump(mode="json")
        )
        return True
