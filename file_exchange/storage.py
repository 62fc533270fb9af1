import json
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional
from urllib.parse import quote

from werkzeug.utils import secure_filename

from file_exchange.logging_config import logger

META_DIR = ".meta"                  # per-file metadata records, hidden from listings
CHUNK_SIZE = 64 * 1024
FORBIDDEN_SEQUENCES = ("..", "/", "\\", "\x00")


class InvalidFilenameError(ValueError):
    """Raised when a client-supplied filename fails the traversal guard."""


class FileTooLargeError(Exception):
    def __init__(self, limit: int):
        super().__init__(f"upload exceeds {limit} bytes")
        self.limit = limit


def _isoformat(millis: float) -> str:
    moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _client_basename(name: str) -> str:
    return name.replace("\\", "/").rsplit("/", 1)[-1]


def recover_original_name(stored_name: str) -> str:
    """
    Best-effort original name for a file that has no metadata record.

    Drops the last ``-<token>`` segment, so ``report-1700000000000.txt``
    gives ``report``. This is lossy: the extension goes with the token and a
    stored name without any ``-`` gives an empty string.
    """
    return "-".join(stored_name.split("-")[:-1])


@dataclass
class StoredFile:
    name: str
    path: Path
    size: int
    upload_time: float              # milliseconds since the epoch
    original_filename: Optional[str] = None

    @property
    def original_name(self) -> str:
        if self.original_filename is None:
            return recover_original_name(self.name)
        return os.path.splitext(_client_basename(self.original_filename))[0]

    @property
    def url(self) -> str:
        return f"/uploads/{quote(self.name)}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "originalName": self.original_name,
            "originalFilename": self.original_filename,
            "size": self.size,
            "uploadTime": _isoformat(self.upload_time),
            "url": self.url,
        }

    def upload_info(self) -> dict:
        return {
            "originalName": self.original_filename,
            "filename": self.name,
            "size": self.size,
            "path": str(self.path),
            "uploadTime": _isoformat(self.upload_time),
        }


class FileStorage:
    """
    The single directory holding every uploaded file.

    The directory (and its metadata subdirectory) is created on construction;
    an ``OSError`` there is meant to stop the process before it serves
    anything. There is no locking: concurrent writers to the same stored name
    resolve last-writer-wins.
    """

    def __init__(self, root, max_size: Optional[int] = None):
        self.root = Path(root).resolve()
        self.meta_dir = self.root / META_DIR
        self.meta_dir.mkdir(parents=True, exist_ok=True)
        self.max_size = max_size

    @staticmethod
    def stored_name_for(original_name: str, now_ms: Optional[int] = None) -> str:
        """``report.txt`` uploaded at ``now_ms`` is stored as ``report-<now_ms>.txt``."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        base, ext = os.path.splitext(_client_basename(original_name))
        base = secure_filename(base) or "file"
        ext = secure_filename(ext[1:])
        return f"{base}-{now_ms}.{ext}" if ext else f"{base}-{now_ms}"

    def resolve_safe(self, filename: str) -> Path:
        """
        Map a client-supplied name to a regular file directly inside the root.

        Raises ``InvalidFilenameError`` for empty or hidden names, names with
        ``..``, ``/``, ``\\`` or NUL, and anything whose canonical path lands
        outside the root (symlinks included). Raises ``FileNotFoundError``
        when no such regular file exists.
        """
        if not filename or filename.startswith(".") or any(s in filename for s in FORBIDDEN_SEQUENCES):
            raise InvalidFilenameError(filename)
        path = (self.root / filename).resolve()
        if path.parent != self.root:
            raise InvalidFilenameError(filename)
        if not path.is_file():
            raise FileNotFoundError(filename)
        return path

    def save(self, stream: BinaryIO, original_name: str) -> StoredFile:
        now_ms = int(time.time() * 1000)
        name = self.stored_name_for(original_name, now_ms)
        target = self.root / name

        fd, tmp_name = tempfile.mkstemp(prefix=".upload-", suffix=".part", dir=self.root)
        size = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if self.max_size is not None and size > self.max_size:
                        raise FileTooLargeError(self.max_size)
                    out.write(chunk)
            os.replace(tmp_name, target)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self._write_meta(name, {"originalName": original_name, "uploadTime": now_ms})
        return StoredFile(name, target, size, now_ms, original_name)

    def list_files(self) -> List[StoredFile]:
        """Regular, non-hidden files in directory order."""
        files = []
        with os.scandir(self.root) as entries:
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    stat = entry.stat(follow_symlinks=False)
                except FileNotFoundError:
                    # deleted between scandir and stat
                    continue
                files.append(self._stored_file(entry.name, Path(entry.path), stat))
        return files

    def delete(self, filename: str) -> None:
        path = self.resolve_safe(filename)
        path.unlink()
        self._meta_path(path.name).unlink(missing_ok=True)

    def _stored_file(self, name: str, path: Path, stat: os.stat_result) -> StoredFile:
        meta = self._read_meta(name)
        if meta is None:
            return StoredFile(name, path, stat.st_size, stat.st_mtime * 1000)
        return StoredFile(name, path, stat.st_size, meta["uploadTime"], meta["originalName"])

    def _meta_path(self, name: str) -> Path:
        return self.meta_dir / f"{name}.json"

    def _write_meta(self, name: str, record: dict) -> None:
        try:
            with open(self._meta_path(name), "w", encoding="utf-8") as f:
                json.dump(record, f)
        except OSError:
            # the file itself is stored; listings fall back to the stored name
            logger.warning("Could not write metadata for %s", name, exc_info=True)

    def _read_meta(self, name: str) -> Optional[dict]:
        try:
            with open(self._meta_path(name), encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable metadata for %s", name, exc_info=True)
            return None
        if (
            not isinstance(record, dict)
            or not isinstance(record.get("originalName"), str)
            or not isinstance(record.get("uploadTime"), (int, float))
        ):
            logger.warning("Ignoring malformed metadata for %s", name)
            return None
        return record
