"""
Transfer progress bookkeeping.

TransferProgressManager is shared by every target of a run, including
targets running in parallel threads, so all state is guarded by a lock.
"""

import threading
import time
from typing import Dict, Optional, Set, Tuple

from deploysync.models import (
    FileTransferResult,
    OverallResult,
    ProgressCallback,
    ProgressEvent,
    TargetConfig,
    TargetResult,
    TransferStatus,
)


class TransferProgressManager:
    """
    Collects per-target results and forwards progress events.

    Events are observational only. Repeated updates for the same file and
    status are collapsed, so each file yields at most one event per status.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self._lock = threading.Lock()
        self._results: Dict[str, TargetResult] = {}
        self._indexes: Dict[str, int] = {}
        self._starts: Dict[str, float] = {}
        self._emitted: Set[Tuple[str, str, TransferStatus]] = set()
        self._start_time = time.monotonic()

    def start(self) -> None:
        with self._lock:
            self._start_time = time.monotonic()
            self._results.clear()
            self._indexes.clear()
            self._starts.clear()
            self._emitted.clear()

    def init_target(self, target: TargetConfig) -> TargetResult:
        with self._lock:
            key = target.target_id
            if key not in self._results:
                self._indexes[key] = len(self._results)
                self._results[key] = TargetResult(target=target)
            self._starts[key] = time.monotonic()
            return self._results[key]

    def _set_status(self, target: TargetConfig, status: TransferStatus) -> None:
        with self._lock:
            result = self._results.get(target.target_id)
            if result is not None:
                result.status = status

    def start_connection(self, target: TargetConfig) -> None:
        self._set_status(target, TransferStatus.CONNECTING)

    def start_transfer(self, target: TargetConfig) -> None:
        self._set_status(target, TransferStatus.TRANSFERRING)

    def update_file_progress(
        self,
        target: TargetConfig,
        file_index: int,
        total_files: int,
        current_file: str,
        bytes_transferred: int,
        file_size: int,
        status: TransferStatus,
    ) -> None:
        if self.callback is None:
            return

        key = target.target_id
        with self._lock:
            marker = (key, current_file, status)
            if marker in self._emitted:
                return
            self._emitted.add(marker)
            event = ProgressEvent(
                target_index=self._indexes.get(key, 0),
                total_targets=len(self._results),
                host=target.host,
                file_index=file_index,
                total_files=total_files,
                current_file=current_file,
                bytes_transferred=bytes_transferred,
                file_size=file_size,
                status=status,
            )
        # outside the lock so a slow callback cannot stall other targets
        self.callback(event)

    def record_file_result(
        self, target: TargetConfig, result: FileTransferResult
    ) -> None:
        with self._lock:
            target_result = self._results.get(target.target_id)
            if target_result is None:
                return
            target_result.files.append(result)
            if result.status == TransferStatus.COMPLETED:
                target_result.success_count += 1
            elif result.status == TransferStatus.FAILED:
                target_result.failed_count += 1
            elif result.status == TransferStatus.SKIPPED:
                target_result.skipped_count += 1

    def complete_target(self, target: TargetConfig) -> None:
        with self._lock:
            result = self._results.get(target.target_id)
            if result is None:
                return
            result.duration = self._elapsed(target.target_id)
            if result.failed_count > 0:
                result.status = TransferStatus.FAILED
            else:
                result.status = TransferStatus.COMPLETED

    def fail_target(
        self, target: TargetConfig, error: str, error_code: Optional[str] = None
    ) -> None:
        with self._lock:
            result = self._results.get(target.target_id)
            if result is None:
                return
            result.status = TransferStatus.FAILED
            result.error = error
            result.error_code = error_code
            result.duration = self._elapsed(target.target_id)

    def _elapsed(self, key: str) -> float:
        return time.monotonic() - self._starts.get(key, self._start_time)

    def get_result(self) -> OverallResult:
        with self._lock:
            targets = list(self._results.values())
            success = sum(1 for t in targets if t.status == TransferStatus.COMPLETED)

            total_files = 0
            total_size = 0
            for target in targets:
                for file in target.files:
                    if file.status == TransferStatus.COMPLETED:
                        total_files += 1
                        total_size += file.size

            return OverallResult(
                success_targets=success,
                failed_targets=len(targets) - success,
                targets=targets,
                total_files=total_files,
                total_size=total_size,
                total_duration=time.monotonic() - self._start_time,
            )
