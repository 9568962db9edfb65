"""Durable storage for the channel matrix and the preferred HTTP port.

Both files are written to a temporary sibling and renamed over the
canonical path, so a reader never observes a half-written file.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dubswitch._constants import CHANNEL_COUNT, channel_id
from dubswitch.exceptions import InvalidMatrixError, PersistenceError

_logger = logging.getLogger(__name__)

Matrix = dict[str, dict[str, Any]]


def _atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to *path* via temp file + ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def normalize_matrix_patch(patch: Any, *, channel_count: int = CHANNEL_COUNT) -> Matrix:
    """Validate a matrix patch and zero-pad its channel keys.

    Keys must be channel numbers (``"1"``, ``"01"`` or ``1``) within range
    and values must be JSON objects.
    """
    if not isinstance(patch, dict):
        raise InvalidMatrixError("matrix must be an object keyed by channel id")
    normalized: Matrix = {}
    for key, value in patch.items():
        text = str(key).strip()
        if not (text.isascii() and text.isdigit()) or not 1 <= int(text) <= channel_count:
            raise InvalidMatrixError(f"invalid channel id {key!r}")
        if not isinstance(value, dict):
            raise InvalidMatrixError(f"channel {key!r} must map to an object")
        normalized[channel_id(int(text))] = copy.deepcopy(value)
    return normalized


@dataclass(frozen=True)
class SaveResult:
    """Authoritative on-disk matrix after a save, plus any fallback warning."""

    matrix: Matrix
    warning: str | None = None


class MatrixStore:
    """JSON document keyed by two-digit channel id."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._document: Matrix = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def document(self) -> Matrix:
        return copy.deepcopy(self._document)

    def _read(self) -> Matrix:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Matrix file %s is not valid JSON; ignoring it", self._path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Matrix file %s does not hold an object; ignoring it", self._path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, dict)}

    def load(self) -> Matrix:
        """Read the canonical file; a missing file is an empty document."""
        self._document = self._read()
        return self.document

    def save(self, patch: Any) -> SaveResult:
        """Merge *patch* and persist the result.

        Raises :class:`InvalidMatrixError` for a malformed patch and
        :class:`PersistenceError` when neither the atomic write nor the
        direct fallback succeeds.
        """
        normalized = normalize_matrix_patch(patch)
        merged = copy.deepcopy(self._document)
        merged.update(normalized)
        text = json.dumps(merged, indent=2, sort_keys=True)

        warning: str | None = None
        try:
            _atomic_write_text(self._path, text)
        except OSError as exc:
            _logger.warning("Atomic matrix write failed (%s); falling back to direct write", exc)
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(text, encoding="utf-8")
            except OSError as fallback_exc:
                raise PersistenceError(
                    f"Could not write matrix: {fallback_exc}",
                    path=str(self._path),
                ) from fallback_exc
            warning = f"atomic write failed, saved non-atomically: {exc}"

        on_disk = self._read()
        if merged and not on_disk:
            _logger.warning("Matrix re-read from %s came back empty; keeping merged document", self._path)
            on_disk = merged
        self._document = on_disk
        _logger.info("Matrix saved (%d channels) to %s", len(self._document), self._path)
        return SaveResult(matrix=self.document, warning=warning)


class PortStore:
    """Preferred HTTP port kept as a plain-text integer."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> int | None:
        try:
            text = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            _logger.warning("Could not read port file %s: %s", self._path, exc)
            return None
        try:
            port = int(text)
        except ValueError:
            return None
        return port if 0 < port <= 65535 else None

    def save(self, port: int) -> int:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {port!r}")
        try:
            _atomic_write_text(self._path, f"{port}\n")
        except OSError as exc:
            raise PersistenceError(f"Could not write port file: {exc}", path=str(self._path)) from exc
        _logger.info("Preferred port %d saved to %s", port, self._path)
        return port
