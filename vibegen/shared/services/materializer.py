"""Durable, session-scoped writes for generated files.

Every file lands at ``<root>/<session_id>/<relative_path>``. Relative
paths are normalized and must stay under the session root. Content is
written to a sibling temp file, fsynced, then renamed over the target
so readers only ever see the old or the new file, never a prefix.
"""
from __future__ import annotations

import hashlib
import logging
import os
import posixpath
import tempfile
from pathlib import Path

from vibegen.engine.errors import ArtifactWriteError, PathEscapeError
from vibegen.engine.models import FileArtifact

logger = logging.getLogger(__name__)


def _fsync_dir(dir_path: Path) -> None:
    """Best-effort directory fsync so the rename itself is durable."""
    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY
    try:
        fd = os.open(str(dir_path), flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Not supported on every platform/filesystem.
        pass
    finally:
        os.close(fd)


def normalize_relative_path(relative_path: str) -> str:
    """Return a clean POSIX relative path or raise PathEscapeError.

    Backslashes are treated as separators, ``.`` segments and inner
    ``..`` that stay inside the root are collapsed. Absolute paths,
    drive letters, and anything resolving above the root are rejected.
    """
    if not relative_path or "\x00" in relative_path:
        raise PathEscapeError(relative_path)
    candidate = relative_path.replace("\\", "/")
    if candidate.startswith("/") or (len(candidate) > 1 and candidate[1] == ":"):
        raise PathEscapeError(relative_path)
    normalized = posixpath.normpath(candidate)
    if normalized in (".", "") or normalized == ".." or normalized.startswith("../"):
        raise PathEscapeError(relative_path)
    return normalized


def content_hash(contents: str | bytes) -> str:
    if isinstance(contents, str):
        contents = contents.encode("utf-8")
    return hashlib.sha256(contents).hexdigest()


class ArtifactMaterializer:
    """Writes generated files under a per-session directory.

    Synchronous by design; async callers run ``materialize`` in a
    worker thread so the frame loop keeps its own pace.
    """

    def __init__(self, output_root: str | Path) -> None:
        self._root = Path(output_root)

    @property
    def root(self) -> Path:
        return self._root

    def session_root(self, session_id: str) -> Path:
        if (
            not session_id
            or session_id in (".", "..")
            or "/" in session_id
            or "\\" in session_id
        ):
            raise PathEscapeError(session_id)
        return self._root / session_id

    def resolve(self, session_id: str, relative_path: str) -> Path:
        """Map *relative_path* to its on-disk location, confined to the session root."""
        session_root = self.session_root(session_id)
        target = session_root / normalize_relative_path(relative_path)
        # Catch symlinked directories that point outside the root.
        root_real = session_root.resolve()
        target_real = target.resolve()
        if target_real != root_real and root_real not in target_real.parents:
            raise PathEscapeError(relative_path)
        return target

    def materialize(
        self,
        session_id: str,
        relative_path: str,
        contents: str,
        *,
        purpose: str | None = None,
    ) -> FileArtifact:
        """Atomically write one file and return its artifact record.

        Raises ArtifactWriteError (PathEscapeError for confinement
        violations). On failure the previous file, if any, is untouched.
        """
        target = self.resolve(session_id, relative_path)
        key = normalize_relative_path(relative_path)
        try:
            data = contents.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ArtifactWriteError(key, f"contents not encodable as UTF-8: {exc.reason}") from exc

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent),
            )
        except OSError as exc:
            raise ArtifactWriteError(key, str(exc)) from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
            _fsync_dir(target.parent)
        except OSError as exc:
            raise ArtifactWriteError(key, str(exc)) from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.debug("Could not remove temp file %s", tmp_path)

        logger.debug("Materialized %s (%d bytes) for session %s", key, len(data), session_id)
        return FileArtifact(
            path=key,
            contents=contents,
            purpose=purpose,
            size=len(data),
            hash=content_hash(data),
        )
