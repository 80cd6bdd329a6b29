"""
Per-conversation session store backed by JSON documents on disk.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from ..models.core import SessionData
from .config import StorageConfig
from .logging_config import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class SessionStoreError(Exception):
    """Custom exception for session store errors."""
    pass


class SessionStore(Protocol):
    """Persistent mapping keyed by conversation identity."""

    def load(self, session_id: str) -> SessionData:
        ...

    def save(self, session_id: str, data: SessionData) -> None:
        ...

    def delete(self, session_id: str) -> bool:
        ...


class JsonFileSessionStore:
    """One JSON document per conversation under a data directory."""

    def __init__(self, config: StorageConfig):
        """
        Initialize the session store.

        Args:
            config: StorageConfig instance with the data directory
        """
        self.config = config
        self.root = Path(config.data_dir)
        self.root.mkdir(parents=True, exist_ok=True)

        logger.info(f'Initialized JsonFileSessionStore at {self.root}')

    def _path(self, session_id: str) -> Path:
        if not session_id or not session_id.strip():
            raise SessionStoreError('Session ID is required')
        return self.root / f'{_UNSAFE_CHARS.sub("_", session_id.strip())}.json'

    def load(self, session_id: str) -> SessionData:
        """Load a conversation's data; a missing document loads empty."""
        path = self._path(session_id)
        if not path.exists():
            logger.debug(f'No stored data for session {session_id}, starting empty')
            return SessionData()

        try:
            with path.open('r', encoding='utf-8') as f:
                return SessionData.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f'Failed to load session {session_id}: {e}')
            raise SessionStoreError(f'Failed to load session {session_id}: {e}')

    def save(self, session_id: str, data: SessionData) -> None:
        """Write the whole document atomically."""
        path = self._path(session_id)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data.to_dict(), f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, path)
            tmp_name = None
            logger.debug(f'Saved session {session_id} ({len(data.memories)} memories)')
        except (OSError, TypeError, ValueError) as e:
            logger.error(f'Failed to save session {session_id}: {e}')
            raise SessionStoreError(f'Failed to save session {session_id}: {e}')
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.remove(tmp_name)

    def delete(self, session_id: str) -> bool:
        """Remove a conversation's document. Returns False if there was none."""
        path = self._path(session_id)
        if not path.exists():
            return False
        try:
            path.unlink()
            logger.debug(f'Deleted session {session_id}')
            return True
        except OSError as e:
            logger.error(f'Failed to delete session {session_id}: {e}')
            raise SessionStoreError(f'Failed to delete session {session_id}: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the data directory.

        Returns:
            True if the directory is writable, False otherwise
        """
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix='.health')
            os.close(fd)
            os.remove(tmp_name)
            return True
        except OSError as e:
            logger.error(f'Session store health check failed: {e}')
            return False
