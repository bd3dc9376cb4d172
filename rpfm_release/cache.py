"""Directory-backed provisioning cache.

Keys are built from static matrix values (for example ``windows-latest-craft-install``),
never from a hash of the provisioned inputs. A hit only says that a previous
run finished provisioning under that key; it does not prove the cached tree
matches what a fresh provisioning run would produce.
"""

from __future__ import annotations

import logging
import re
import shutil
import uuid
import warnings
from pathlib import Path
from typing import Union

from .errors import CacheStoreWarning, ConfigurationError
from .models import CacheEntry

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_PAYLOAD = "payload"


class CacheManager:
    """Looks up and stores cache entries under ``root``.

    Concurrent writers to one key are last-writer-wins: each store is staged in
    a private directory and swapped into place.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def _entry_dir(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ConfigurationError(f"Invalid cache key '{key}'.")
        return self.root / key

    def lookup(self, key: str) -> CacheEntry:
        payload = self._entry_dir(key) / _PAYLOAD
        present = payload.exists()
        logger.debug("Cache %s for key %s", "hit" if present else "miss", key)
        return CacheEntry(key=key, path=str(payload), present=present)

    def restore(self, entry: CacheEntry, destination: Union[str, Path]) -> bool:
        """Copy a cached payload to ``destination``; False if it could not be restored."""

        if not entry.present:
            return False
        source = Path(entry.path)
        target = Path(destination)
        try:
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
        except OSError as exc:
            logger.warning("Failed to restore cache key %s into %s: %s", entry.key, target, exc)
            return False
        return True

    def store(self, key: str, path: Union[str, Path]) -> bool:
        """Persist ``path`` under ``key``. Failures warn and return False."""

        entry_dir = self._entry_dir(key)
        source = Path(path)
        staging = self.root / f".staging-{key}-{uuid.uuid4().hex}"
        try:
            if not source.exists():
                raise FileNotFoundError(f"cache path does not exist: {source}")
            staging.mkdir(parents=True)
            if source.is_dir():
                shutil.copytree(source, staging / _PAYLOAD)
            else:
                shutil.copy2(source, staging / _PAYLOAD)
            if entry_dir.exists():
                shutil.rmtree(entry_dir)
            staging.replace(entry_dir)
        except OSError as exc:
            message = f"Could not store cache key '{key}' from {source}: {exc}"
            logger.warning(message)
            warnings.warn(message, CacheStoreWarning, stacklevel=2)
            shutil.rmtree(staging, ignore_errors=True)
            return False
        logger.info("Stored cache key %s", key)
        return True
