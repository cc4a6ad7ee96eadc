"""
Checkpoint Stores

Session progress ({rows, currentRowIndex, ongoingOwnership,
ownershipHistory}) is saved after every change and loaded once when a
session starts. Two stores:

- FileCheckpointStore: one JSON file per session key
- RemoteCheckpointStore: the documents-worker checkpoint API over HTTP
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from .config import CONFIG
from .exceptions import CheckpointError

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """
    Abstract base class for session checkpoint storage.

    Payloads are plain JSON-compatible dicts; the session owns their shape.
    """

    @abstractmethod
    async def save(self, session_key: str, payload: dict) -> None:
        """Persist the latest progress for a session."""
        pass

    @abstractmethod
    async def load(self, session_key: str) -> Optional[dict]:
        """Return saved progress, or None when the session has none."""
        pass

    @abstractmethod
    async def delete(self, session_key: str) -> None:
        """Forget a session's progress (Start Fresh)."""
        pass


class MemoryCheckpointStore(CheckpointStore):
    """Keeps checkpoints in a dict; for tests and single-process use."""

    def __init__(self):
        self.checkpoints: dict[str, dict] = {}

    async def save(self, session_key: str, payload: dict) -> None:
        # Round-trip through JSON so stored payloads never share objects
        self.checkpoints[session_key] = json.loads(json.dumps(payload))

    async def load(self, session_key: str) -> Optional[dict]:
        payload = self.checkpoints.get(session_key)
        return json.loads(json.dumps(payload)) if payload is not None else None

    async def delete(self, session_key: str) -> None:
        self.checkpoints.pop(session_key, None)


class FileCheckpointStore(CheckpointStore):
    """One JSON file per session under a directory."""

    def __init__(self, directory: str = None):
        self.directory = Path(directory or CONFIG.CHECKPOINT_DIR)

    def _path(self, session_key: str) -> Path:
        safe = re.sub(r'[^A-Za-z0-9_.-]', '_', session_key)
        return self.directory / f"{safe}.json"

    async def save(self, session_key: str, payload: dict) -> None:
        path = self._path(session_key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps({**payload, "timestamp": time.time()}))
            tmp_path.replace(path)
        except OSError as e:
            raise CheckpointError(f"Failed to save checkpoint {path}: {e}") from e
        logger.debug(f"Saved checkpoint {path}")

    async def load(self, session_key: str) -> Optional[dict]:
        path = self._path(session_key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            # A corrupt checkpoint should not block starting over
            logger.error(f"Failed to restore progress from {path}: {e}")
            return None

    async def delete(self, session_key: str) -> None:
        self._path(session_key).unlink(missing_ok=True)


class RemoteCheckpointStore(CheckpointStore):
    """Client for the documents-worker checkpoint API."""

    def __init__(self, base_url: str = None, api_key: str = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or CONFIG.DOCUMENTS_API_URL).rstrip("/")
        self.headers = {
            "X-API-Key": api_key or CONFIG.PROCESSING_API_KEY,
            "Content-Type": "application/json"
        }
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=30, transport=self.transport)

    def _url(self, session_key: str) -> str:
        return f"{self.base_url}/api/runsheet-sessions/{quote(session_key, safe='')}"

    async def save(self, session_key: str, payload: dict) -> None:
        async with self._client() as client:
            try:
                response = await client.put(
                    self._url(session_key),
                    headers=self.headers,
                    json={**payload, "timestamp": time.time()}
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise CheckpointError(f"Failed to save checkpoint {session_key}: {e}") from e
        logger.debug(f"Saved remote checkpoint {session_key}")

    async def load(self, session_key: str) -> Optional[dict]:
        async with self._client() as client:
            try:
                response = await client.get(
                    self._url(session_key),
                    headers=self.headers
                )
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                raise CheckpointError(f"Failed to load checkpoint {session_key}: {e}") from e

    async def delete(self, session_key: str) -> None:
        async with self._client() as client:
            try:
                response = await client.delete(
                    self._url(session_key),
                    headers=self.headers
                )
                if response.status_code != 404:
                    response.raise_for_status()
            except httpx.HTTPError as e:
                raise CheckpointError(f"Failed to delete checkpoint {session_key}: {e}") from e
