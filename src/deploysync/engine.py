"""
Upload orchestration across targets.

Each target runs its own lifecycle: ignore filter, connect, mirror
reconciliation, diff, transfers, disconnect. A failing target is recorded
in the result and never stops the others.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from deploysync.diff import apply_diff, compute_diff
from deploysync.errors import UploadTransferError, error_code_of
from deploysync.excludes import apply_ignore_filter
from deploysync.mirror import prepare_mirror_sync
from deploysync.models import (
    DiffResult,
    FileTransferResult,
    OverallResult,
    ProgressCallback,
    TargetConfig,
    TargetResult,
    TransferStatus,
    UploadFile,
    UploadOptions,
)
from deploysync.progress import TransferProgressManager
from deploysync.protocols import create_transport
from deploysync.protocols.base import Transport, has_bulk_transfer, has_native_diff

logger = logging.getLogger(__name__)

TransportFactory = Callable[[TargetConfig], Transport]


@dataclass
class TargetDiff:
    """Diff of one target, for preview before uploading."""

    target: TargetConfig
    diff: Optional[DiffResult] = None
    files: List[UploadFile] = field(default_factory=list)
    method: str = "manual"
    error: Optional[str] = None
    error_code: Optional[str] = None


def files_for_target(
    target: TargetConfig, files: List[UploadFile], options: UploadOptions
) -> List[UploadFile]:
    """Pick the batch for a target and drop what its ignore patterns match."""
    batch = files
    if options.files_by_target and target.target_id in options.files_by_target:
        batch = options.files_by_target[target.target_id]
    return apply_ignore_filter(batch, target.ignore)


def plan_target(
    transport: Transport,
    target: TargetConfig,
    batch: List[UploadFile],
    options: UploadOptions,
) -> Tuple[List[UploadFile], List[UploadFile], Optional[DiffResult]]:
    """
    Decide what a connected target needs.

    Returns:
        Tuple of (files to process, unchanged files, diff). The diff is
        None when ``changed_only`` is off.
    """
    if target.is_mirror:
        batch = prepare_mirror_sync(
            transport, batch, target.ignore, local_dir=options.local_dir
        )

    if not options.changed_only:
        return batch, [], None

    # narrowing needs content comparison; size+mtime misses same-size edits
    diff = compute_diff(
        transport,
        batch,
        local_dir=options.local_dir,
        checksum=options.checksum or has_native_diff(transport),
        concurrency=options.concurrency,
        ignore_patterns=target.ignore,
    )
    changed = apply_diff(batch, diff)
    changed_paths = {f.relative_path for f in changed}
    unchanged = [
        f for f in batch if not f.is_directory and f.relative_path not in changed_paths
    ]
    logger.debug(
        "[%s] diff: +%d ~%d -%d, %d unchanged",
        target.host,
        diff.added,
        diff.modified,
        diff.deleted,
        len(unchanged),
    )
    return changed, unchanged, diff


def _depth_key(f: UploadFile) -> Tuple[int, str]:
    path = f.relative_path.strip("/")
    return (path.count("/"), path.lower())


def _check_unique(targets: List[TargetConfig]) -> None:
    seen = set()
    for target in targets:
        if target.target_id in seen:
            raise ValueError(f"Duplicate target: {target.target_id}")
        seen.add(target.target_id)


class _TargetRun:
    """Executes the planned operations of one connected target."""

    def __init__(
        self,
        transport: Transport,
        target: TargetConfig,
        options: UploadOptions,
        progress: TransferProgressManager,
        total: int,
    ):
        self.transport = transport
        self.target = target
        self.options = options
        self.progress = progress
        self.total = total
        self.index = 0

    def _emit(self, file: UploadFile, status: TransferStatus, transferred: int = 0) -> None:
        self.progress.update_file_progress(
            self.target,
            self.index,
            self.total,
            file.relative_path,
            transferred,
            file.size,
            status,
        )

    def run_one(self, file: UploadFile, operation: Callable[[], None]) -> None:
        self._emit(file, TransferStatus.TRANSFERRING)
        start = time.monotonic()
        try:
            operation()
        except Exception as e:
            logger.debug("[%s] %s failed: %s", self.target.host, file.relative_path, e)
            self.progress.record_file_result(
                self.target,
                FileTransferResult(
                    path=file.relative_path,
                    status=TransferStatus.FAILED,
                    size=file.size,
                    duration=time.monotonic() - start,
                    error=str(e),
                ),
            )
            self._emit(file, TransferStatus.FAILED)
            self.index += 1
            if self.options.strict:
                raise
            return

        self.progress.record_file_result(
            self.target,
            FileTransferResult(
                path=file.relative_path,
                status=TransferStatus.COMPLETED,
                size=0 if file.is_delete else file.size,
                duration=time.monotonic() - start,
            ),
        )
        self._emit(file, TransferStatus.COMPLETED, file.size)
        self.index += 1

    def execute(self, planned: List[UploadFile]) -> None:
        dirs = sorted(
            (f for f in planned if f.is_directory and not f.is_delete), key=_depth_key
        )
        deletes = [f for f in planned if f.is_delete]
        uploads = sorted(
            (f for f in planned if not f.is_directory and not f.is_delete),
            key=_depth_key,
        )

        for f in dirs:
            self.run_one(f, lambda f=f: self.transport.mkdir(f.relative_path))

        if deletes:
            logger.debug("[%s] deleting %d file(s)", self.target.host, len(deletes))
        for f in deletes:
            self.run_one(f, lambda f=f: self.transport.delete(f.relative_path))

        if not uploads:
            return

        if has_bulk_transfer(self.transport):
            self._bulk(uploads)
            return

        logger.debug("[%s] uploading %d file(s) one by one", self.target.host, len(uploads))
        for f in uploads:
            self.run_one(
                f,
                lambda f=f: self.transport.transfer(
                    f,
                    f.relative_path,
                    lambda done, total, f=f: self._emit(f, TransferStatus.TRANSFERRING, done),
                ),
            )

    def _bulk(self, uploads: List[UploadFile]) -> None:
        logger.debug("[%s] using bulk transfer for %d file(s)", self.target.host, len(uploads))

        def on_progress(done: int, total: int, message: Optional[str]) -> None:
            self.progress.update_file_progress(
                self.target,
                done,
                total,
                message or "Transferring...",
                0,
                0,
                TransferStatus.TRANSFERRING,
            )

        start = time.monotonic()
        result = self.transport.bulk_transfer(uploads, on_progress)
        failed_paths = set(result.failed_paths)
        if not failed_paths and (result.error is not None or result.failed_count > 0):
            failed_paths = {f.relative_path for f in uploads}
        per_file = result.duration / len(uploads)

        for f in uploads:
            failed = f.relative_path in failed_paths
            self.progress.record_file_result(
                self.target,
                FileTransferResult(
                    path=f.relative_path,
                    status=TransferStatus.FAILED if failed else TransferStatus.COMPLETED,
                    size=f.size,
                    duration=(time.monotonic() - start) if failed else per_file,
                    error=(result.error or "Bulk transfer failed") if failed else None,
                ),
            )
            self._emit(f, TransferStatus.FAILED if failed else TransferStatus.COMPLETED)
        self.index += len(uploads)

        logger.debug(
            "[%s] bulk transfer done in %.2fs: %d succeeded, %d failed",
            self.target.host,
            result.duration,
            result.success_count,
            result.failed_count,
        )
        if failed_paths and self.options.strict:
            raise UploadTransferError(f"Bulk transfer failed: {result.error}")


def _record_skipped(
    progress: TransferProgressManager, target: TargetConfig, files: List[UploadFile]
) -> None:
    for f in files:
        progress.record_file_result(
            target,
            FileTransferResult(
                path=f.relative_path, status=TransferStatus.SKIPPED, size=f.size
            ),
        )


def upload_to_target(
    target: TargetConfig,
    files: List[UploadFile],
    options: UploadOptions,
    progress: TransferProgressManager,
    transport_factory: TransportFactory = create_transport,
) -> TargetResult:
    """
    Run the full lifecycle for one target.

    Failures are recorded on the returned TargetResult, never raised. The
    transport is disconnected on every path.

    Args:
        target: Target to upload to.
        files: Batch shared by all targets.
        options: Run options.
        progress: Shared progress manager.
        transport_factory: Builds the transport for ``target``.

    Returns:
        The target's result as tracked by ``progress``.
    """
    result = progress.init_target(target)
    batch = files_for_target(target, files, options)

    logger.debug(
        "[%s] Connecting to %s:%s via %s...",
        target.host,
        target.host,
        target.resolved_port,
        target.protocol.value,
    )
    progress.start_connection(target)

    transport: Optional[Transport] = None
    try:
        transport = transport_factory(target)
        connect_start = time.monotonic()
        transport.connect()
        logger.debug(
            "[%s] Connected in %.2fs", target.host, time.monotonic() - connect_start
        )
        progress.start_transfer(target)

        planned, unchanged, _ = plan_target(transport, target, batch, options)
        _record_skipped(progress, target, unchanged)

        if options.dry_run:
            for f in planned:
                logger.info(
                    "[%s] dry run: would %s %s",
                    target.host,
                    "delete" if f.is_delete else "upload",
                    f.relative_path,
                )
            _record_skipped(progress, target, planned)
        else:
            _TargetRun(transport, target, options, progress, len(planned)).execute(planned)

        progress.complete_target(target)
    except Exception as e:
        logger.debug("[%s] target failed: %s", target.host, e)
        progress.fail_target(target, str(e), error_code_of(e))
    finally:
        if transport is not None:
            transport.disconnect()

    return result


def upload_to_targets(
    targets: List[TargetConfig],
    files: List[UploadFile],
    options: Optional[UploadOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    transport_factory: TransportFactory = create_transport,
) -> OverallResult:
    """
    Upload a batch to every target, sequentially or in parallel.

    Args:
        targets: Targets to upload to.
        files: Batch of files (used for targets without a per-target list).
        options: Run options; defaults apply when omitted.
        on_progress: Receives ProgressEvents; observational only.
        transport_factory: Builds a transport per target.

    Returns:
        OverallResult aggregating every target.
    """
    options = options or UploadOptions()
    _check_unique(targets)
    progress = TransferProgressManager(on_progress)
    progress.start()
    for target in targets:
        progress.init_target(target)

    if options.parallel and len(targets) > 1:
        with ThreadPoolExecutor(max_workers=len(targets)) as executor:
            futures = [
                executor.submit(
                    upload_to_target, t, files, options, progress, transport_factory
                )
                for t in targets
            ]
            for future in futures:
                future.result()
    else:
        for target in targets:
            upload_to_target(target, files, options, progress, transport_factory)

    return progress.get_result()


def diff_target(
    target: TargetConfig,
    files: List[UploadFile],
    options: UploadOptions,
    transport_factory: TransportFactory = create_transport,
) -> TargetDiff:
    """Connect to one target and report what an upload would change."""
    result = TargetDiff(target=target)
    batch = files_for_target(target, files, options)

    transport: Optional[Transport] = None
    try:
        transport = transport_factory(target)
        transport.connect()
        if has_native_diff(transport) and options.local_dir is not None:
            result.method = "native"

        diff_options = UploadOptions(
            concurrency=options.concurrency,
            changed_only=True,
            local_dir=options.local_dir,
            checksum=options.checksum,
        )
        planned, _, diff = plan_target(transport, target, batch, diff_options)
        result.diff = diff
        result.files = planned
    except Exception as e:
        logger.debug("[%s] diff failed: %s", target.host, e)
        result.error = str(e)
        result.error_code = error_code_of(e)
    finally:
        if transport is not None:
            transport.disconnect()

    return result


def get_target_diffs(
    targets: List[TargetConfig],
    files: List[UploadFile],
    options: Optional[UploadOptions] = None,
    transport_factory: TransportFactory = create_transport,
) -> List[TargetDiff]:
    """Diff every target; failures are recorded per target, not raised."""
    options = options or UploadOptions()
    _check_unique(targets)
    if options.parallel and len(targets) > 1:
        with ThreadPoolExecutor(max_workers=len(targets)) as executor:
            return list(
                executor.map(
                    lambda t: diff_target(t, files, options, transport_factory), targets
                )
            )
    return [diff_target(t, files, options, transport_factory) for t in targets]
