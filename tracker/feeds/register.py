"""Timestamped key-value store shared by all sync jobs.

Keys are hierarchical strings (``history/bitcoin``,
``usd-exchange-rates/EUR``); values are arbitrary JSON-serializable
structures; timestamps are epoch milliseconds taken from the injected Clock.

Every ``set_item`` stamps ``clock.now()`` unconditionally and replaces the
payload only when one is supplied, so ``set_item(key)`` is a valid "touch"
that records "checked now" without altering data.  Writes are
last-write-wins per key with no locking and no cross-key atomicity; a single
writer process is assumed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, NamedTuple

from tracker.feeds.clock import Clock, SystemClock
from tracker.feeds.errors import RegisterError

logger = logging.getLogger("tracker.feeds.register")

REGISTER_DIR_NAME = "register"
REGISTER_FILE_NAME = "register.json"


class RegisterEntry(NamedTuple):
    value: Any | None
    last_updated: int | None


class Register(ABC):
    """Timestamped key-value persistence capability."""

    @abstractmethod
    def get_item(self, key: str) -> Any | None:
        """Return the payload stored under ``key``, or None."""

    @abstractmethod
    def get_item_last_updated(self, key: str) -> int | None:
        """Return when ``key`` was last written or touched, or None."""

    def get_item_and_timestamp(self, key: str) -> RegisterEntry:
        return RegisterEntry(self.get_item(key), self.get_item_last_updated(key))

    @abstractmethod
    def set_item(self, key: str, value: Any | None = None) -> None:
        """Stamp ``key`` with the current instant, storing ``value`` if given."""


class InMemoryRegister(Register):
    """Dict-backed register for tests and dry runs."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._data: dict[str, Any] = {}
        self._timestamps: dict[str, int] = {}

    def get_item(self, key: str) -> Any | None:
        return self._data.get(key)

    def get_item_last_updated(self, key: str) -> int | None:
        return self._timestamps.get(key)

    def set_item(self, key: str, value: Any | None = None) -> None:
        if value is not None:
            self._data[key] = value
        self._timestamps[key] = self._clock.now()

    def clear(self) -> None:
        self._data.clear()
        self._timestamps.clear()

    def __len__(self) -> int:
        return len(self._timestamps)


class FileRegister(Register):
    """Filesystem register.

    Layout under ``data_dir``::

        <key>.json                  payload of each key (nested dirs for '/')
        register/register.json      {key: last_updated_ms} for every key

    Files are replaced atomically (temp file + ``os.replace``) so a crash
    mid-write leaves the previous version in place.
    """

    def __init__(self, data_dir: Path | str, clock: Clock | None = None) -> None:
        self._data_dir = Path(data_dir)
        self._clock = clock or SystemClock()
        self._register_path = self._data_dir / REGISTER_DIR_NAME / REGISTER_FILE_NAME

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def get_item(self, key: str) -> Any | None:
        return self._read_json(self._key_path(key))

    def get_item_last_updated(self, key: str) -> int | None:
        timestamps = self._read_json(self._register_path) or {}
        value = timestamps.get(key)
        return int(value) if value is not None else None

    def set_item(self, key: str, value: Any | None = None) -> None:
        if value is not None:
            self._write_json(self._key_path(key), value)

        timestamps = self._read_json(self._register_path) or {}
        timestamps[key] = self._clock.now()
        self._write_json(self._register_path, timestamps)
        logger.debug("Register %s %s", "wrote" if value is not None else "touched", key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _key_path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid register key: {key!r}")
        return self._data_dir.joinpath(*parts[:-1], f"{parts[-1]}.json")

    @staticmethod
    def _read_json(path: Path) -> Any | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RegisterError(
                f"Register file {path} is not valid JSON: {exc}. "
                "Restore it from version control or delete it to re-fetch."
            ) from exc

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
