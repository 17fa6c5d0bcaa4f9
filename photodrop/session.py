"""
Ingestion session: owns the selected files and drives each one through
derivation -> target acquisition -> transfer (original, preview) -> record creation.

All mutation of SelectedFile entries happens on the event loop; decode/encode work
runs in worker threads but its results are applied back here.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import httpx

from .api import AcquisitionError, RecordCreationError
from .cancellation import CancelToken, Cancelled
from .derivation import DEFAULT_MAX_LONG_EDGE, DEFAULT_QUALITY, DerivationError, derive
from .models import FileSnapshot, FileStatus, RawFile, SelectedFile
from .protocols import PhotoRecorder, TargetIssuer
from .transfer import DEFAULT_CHUNK_SIZE, TransferError, transfer

logger = logging.getLogger("photodrop.session")

# Share of a file's progress bar taken by the original; the preview fills the rest
ORIGINAL_SHARE = 50.0


class SessionError(RuntimeError):
    pass


class BatchRejectedError(SessionError):
    """The whole batch was refused before any per-file work started."""


class CollectionSelection:
    """Destination collection ids, in the order they were chosen."""

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: list[str] = []
        for cid in ids:
            self.select(cid)

    def select(self, collection_id: str) -> None:
        if collection_id not in self._ids:
            self._ids.append(collection_id)

    def deselect(self, collection_id: str) -> None:
        if collection_id in self._ids:
            self._ids.remove(collection_id)

    def toggle(self, collection_id: str) -> bool:
        """Returns True if the collection is selected afterwards."""
        if collection_id in self._ids:
            self._ids.remove(collection_id)
            return False
        self._ids.append(collection_id)
        return True

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._ids)

    def __contains__(self, collection_id: object) -> bool:
        return collection_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass(frozen=True)
class BatchResult:
    done: tuple[str, ...]
    failed: tuple[str, ...]
    cancelled: tuple[str, ...]
    not_started: tuple[str, ...]

    @property
    def completed(self) -> bool:
        """At least one file made it all the way; callers may refresh their gallery."""
        return bool(self.done)

    @property
    def attempted(self) -> int:
        return len(self.done) + len(self.failed) + len(self.cancelled)


class IngestionSession:
    def __init__(
        self,
        *,
        targets: TargetIssuer,
        records: PhotoRecorder,
        storage: httpx.AsyncClient,
        max_long_edge: int = DEFAULT_MAX_LONG_EDGE,
        quality: int = DEFAULT_QUALITY,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_change: Callable[[FileSnapshot], None] | None = None,
        on_complete: Callable[[BatchResult], None] | None = None,
    ) -> None:
        self._targets = targets
        self._records = records
        self._storage = storage
        self._max_long_edge = max_long_edge
        self._quality = quality
        self._chunk_size = chunk_size
        self._on_change = on_change
        self._on_complete = on_complete

        self.collections = CollectionSelection()
        self._files: dict[str, SelectedFile] = {}
        self._derivations: set[asyncio.Task[None]] = set()
        self._cancel = CancelToken()
        self._ids = itertools.count(1)
        self._uploading = False

    async def __aenter__(self) -> IngestionSession:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # -- queries -----------------------------------------------------------

    def snapshot(self) -> list[FileSnapshot]:
        return [entry.snapshot() for entry in self._files.values()]

    def get(self, file_id: str) -> FileSnapshot:
        return self._require(file_id).snapshot()

    @property
    def is_uploading(self) -> bool:
        return self._uploading

    @property
    def eligible_count(self) -> int:
        return sum(1 for entry in self._files.values() if entry.is_eligible)

    # -- selection ---------------------------------------------------------

    def add_files(self, raws: Iterable[RawFile]) -> list[str]:
        """
        Add files in selection order and start deriving each one immediately.
        Must be called from within a running event loop.
        """
        if self._cancel.cancelled:
            raise SessionError("Session is closed")
        loop = asyncio.get_running_loop()

        added: list[str] = []
        for raw in raws:
            file_id = f"file-{next(self._ids)}"
            entry = SelectedFile(file_id=file_id, raw=raw, cancel=self._cancel.child())
            self._files[file_id] = entry
            added.append(file_id)
            self._notify(entry)

            task = loop.create_task(self._run_derivation(entry), name=f"derive-{file_id}")
            self._derivations.add(task)
            task.add_done_callback(self._derivations.discard)

        logger.debug(f"Selected {len(added)} file(s); {len(self._files)} in session")
        return added

    def remove_file(self, file_id: str) -> None:
        entry = self._require(file_id)
        if entry.status == FileStatus.UPLOADING:
            raise SessionError(f"Cannot remove {entry.raw.name} while it is uploading")
        entry.cancel.cancel()
        del self._files[file_id]
        logger.debug(f"Removed {entry.raw.name} ({file_id})")

    async def wait_for_derivations(self) -> None:
        while self._derivations:
            await asyncio.gather(*list(self._derivations), return_exceptions=True)

    # -- upload ------------------------------------------------------------

    async def upload_batch(self) -> BatchResult:
        """
        Upload every file that is derived and pending, one file at a time.

        Raises BatchRejectedError (and changes nothing) when no collection is selected,
        nothing is eligible, or a batch is already running. Per-file failures never
        abort the batch.
        """
        if self._uploading:
            raise BatchRejectedError("An upload batch is already running")
        if self._cancel.cancelled:
            raise BatchRejectedError("Session is closed")
        collection_ids = list(self.collections.ids)
        if not collection_ids:
            raise BatchRejectedError("Please select at least one collection")
        batch = [entry for entry in self._files.values() if entry.is_eligible]
        if not batch:
            raise BatchRejectedError("No files ready to upload")

        logger.info(f"Uploading {len(batch)} file(s) to collection(s): {', '.join(collection_ids)}")
        done: list[str] = []
        failed: list[str] = []
        cancelled: list[str] = []
        not_started: list[str] = []

        self._uploading = True
        try:
            for i, entry in enumerate(batch, start=1):
                if self._cancel.cancelled:
                    not_started.append(entry.file_id)
                    continue
                # Removed (or otherwise changed) since the batch started
                if self._files.get(entry.file_id) is not entry or not entry.is_eligible:
                    continue

                logger.info(f"[{i}/{len(batch)}] {entry.raw.name}")
                await self._upload_one(entry, collection_ids)

                if entry.status == FileStatus.DONE:
                    done.append(entry.file_id)
                elif entry.status == FileStatus.CANCELLED:
                    cancelled.append(entry.file_id)
                else:
                    failed.append(entry.file_id)
        finally:
            self._uploading = False

        result = BatchResult(
            done=tuple(done),
            failed=tuple(failed),
            cancelled=tuple(cancelled),
            not_started=tuple(not_started),
        )
        logger.info(
            f"Batch settled: {len(done)} done, {len(failed)} failed"
            + (f", {len(cancelled) + len(not_started)} cancelled" if cancelled or not_started else "")
        )
        if result.completed and self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception as e:  # noqa: BLE001 - the batch has already settled
                logger.error(f"Error in completion listener: {e}")
        return result

    async def _upload_one(self, entry: SelectedFile, collection_ids: list[str]) -> None:
        derived = entry.derived
        assert derived is not None
        entry.progress = 0.0
        self._transition(entry, FileStatus.UPLOADING)

        try:
            targets = await self._targets.acquire_targets(derived.original_filename, derived.preview_filename)
            entry.cancel.raise_if_cancelled()

            await transfer(
                self._storage,
                targets.image_url,
                entry.raw.data,
                content_type=targets.image_content_type,
                on_progress=lambda f: self._set_progress(entry, f * ORIGINAL_SHARE),
                cancel=entry.cancel,
                chunk_size=self._chunk_size,
            )
            await transfer(
                self._storage,
                targets.thumbnail_url,
                derived.preview,
                content_type=targets.thumbnail_content_type,
                on_progress=lambda f: self._preview_progress(entry, f),
                cancel=entry.cancel,
                chunk_size=self._chunk_size,
            )
            entry.cancel.raise_if_cancelled()

            try:
                record = await self._records.create_photo(
                    url=derived.original_filename,
                    thumbnail=derived.preview_filename,
                    captured_at=derived.captured_at,
                    collection_ids=collection_ids,
                )
            except RecordCreationError:
                logger.warning(
                    f"  {derived.original_filename} and {derived.preview_filename} are in storage "
                    f"but have no photo record (orphaned objects)"
                )
                raise
        except Cancelled:
            self._transition(entry, FileStatus.CANCELLED, error="Cancelled")
            logger.info(f"  Cancelled: {entry.raw.name}")
        except asyncio.CancelledError:
            self._transition(entry, FileStatus.CANCELLED, error="Cancelled")
            logger.info(f"  Cancelled: {entry.raw.name}")
            raise
        except (AcquisitionError, TransferError, RecordCreationError) as e:
            self._transition(entry, FileStatus.ERROR, error=str(e).split("\n")[0])
            logger.error(f"  Upload failed: {entry.raw.name}: {e}")
        except Exception as e:  # noqa: BLE001 - one file's failure never aborts the batch
            error_type = type(e).__name__
            self._transition(entry, FileStatus.ERROR, error=f"{error_type}: {e}")
            logger.exception(f"  Unexpected error uploading {entry.raw.name} ({error_type})")
        else:
            entry.progress = 100.0
            self._transition(entry, FileStatus.DONE)
            logger.info(f"  Uploaded: {entry.raw.name} (photo {record.id})")

    # -- lifecycle ---------------------------------------------------------

    def cancel(self) -> None:
        """Stop in-flight derivation/transfer; affected files end up cancelled."""
        self._cancel.cancel()

    async def close(self) -> None:
        self.cancel()
        for task in list(self._derivations):
            task.cancel()
        await self.wait_for_derivations()
        self._files.clear()

    # -- internals ---------------------------------------------------------

    def _require(self, file_id: str) -> SelectedFile:
        try:
            return self._files[file_id]
        except KeyError:
            raise SessionError(f"Unknown file id: {file_id}") from None

    def _is_live(self, entry: SelectedFile) -> bool:
        return self._files.get(entry.file_id) is entry

    async def _run_derivation(self, entry: SelectedFile) -> None:
        self._transition(entry, FileStatus.PROCESSING)
        try:
            derived = await derive(
                entry.raw,
                max_long_edge=self._max_long_edge,
                quality=self._quality,
                cancel=entry.cancel,
            )
        except Cancelled:
            if self._is_live(entry):
                self._transition(entry, FileStatus.CANCELLED, error="Cancelled")
            return
        except asyncio.CancelledError:
            if self._is_live(entry):
                self._transition(entry, FileStatus.CANCELLED, error="Cancelled")
            raise
        except DerivationError as e:
            if self._is_live(entry):
                self._transition(entry, FileStatus.ERROR, error=str(e).split("\n")[0])
            logger.error(str(e))
            return
        except Exception as e:  # noqa: BLE001 - a bad file must not take the session down
            if self._is_live(entry):
                self._transition(entry, FileStatus.ERROR, error=f"{type(e).__name__}: {e}")
            logger.exception(f"Unexpected error deriving {entry.raw.name}")
            return

        if not self._is_live(entry):
            return
        entry.derived = derived
        self._transition(entry, FileStatus.PENDING)

    def _transition(self, entry: SelectedFile, status: FileStatus, *, error: str | None = None) -> None:
        if entry.status.is_terminal:
            # Only removal changes these
            return
        entry.status = status
        entry.error = error
        self._notify(entry)

    def _preview_progress(self, entry: SelectedFile, fraction: float) -> None:
        # Mid-stream preview chunks are not counted; a failed preview write stays at the original's share
        if fraction >= 1.0:
            self._set_progress(entry, 100.0)

    def _set_progress(self, entry: SelectedFile, value: float) -> None:
        if entry.status != FileStatus.UPLOADING:
            return
        value = min(100.0, value)
        if value <= entry.progress:
            return
        entry.progress = value
        self._notify(entry)

    def _notify(self, entry: SelectedFile) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(entry.snapshot())
        except Exception as e:  # noqa: BLE001 - listeners must not break the pipeline
            logger.error(f"Error in change listener for {entry.file_id}: {e}")
