from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .cancellation import CancelToken

if TYPE_CHECKING:
    from .derivation import Derived


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.DONE, FileStatus.ERROR, FileStatus.CANCELLED)


@dataclass(frozen=True)
class RawFile:
    """One operator-chosen file: name, bytes and (optionally) its last-modified time."""

    name: str
    data: bytes = field(repr=False)
    last_modified: datetime | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path) -> RawFile:
        st = path.stat()
        return cls(
            name=path.name,
            data=path.read_bytes(),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )


@dataclass
class SelectedFile:
    """
    Mutable per-file state. Only IngestionSession creates or changes these;
    everyone else reads FileSnapshot copies.
    """

    file_id: str
    raw: RawFile
    cancel: CancelToken
    status: FileStatus = FileStatus.PENDING
    progress: float = 0.0
    error: str | None = None
    derived: Derived | None = None

    @property
    def is_eligible(self) -> bool:
        return self.status == FileStatus.PENDING and self.derived is not None

    def snapshot(self) -> FileSnapshot:
        return FileSnapshot(
            file_id=self.file_id,
            name=self.raw.name,
            size=self.raw.size,
            status=self.status,
            progress=self.progress,
            error=self.error,
            has_derived=self.derived is not None,
            preview_filename=self.derived.preview_filename if self.derived is not None else None,
        )


@dataclass(frozen=True)
class FileSnapshot:
    file_id: str
    name: str
    size: int
    status: FileStatus
    progress: float
    error: str | None
    has_derived: bool
    preview_filename: str | None
