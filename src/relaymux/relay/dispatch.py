"""Fan one relay command out to several sessions.

Delivery is best effort: each target is written independently, a failing
target never stops the others, and the caller gets back the partition of
targets into delivered and failed ones. One audit entry is appended per call.

`dispatch` returns immediately with a Future; the character loops that call
it never wait on delivery.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from ..contracts.v1 import DispatchResult
from ..kernel.directory import PaneDirectory
from ..kernel.dispatch_log import DispatchLogStore, build_entry


logger = logging.getLogger("relaymux.dispatch")

DISPATCH_FAILED_STATUS = "dispatch failed"


class WriteError(RuntimeError):
    """Writing to one target session failed."""


class DispatchError(RuntimeError):
    """The dispatch as a whole could not run (e.g. the parent pane is gone)."""


class SessionWriter(ABC):
    @abstractmethod
    def write(self, target: str, data: str) -> None:
        """Write `data` to the session `target`; raise WriteError on failure."""


def format_status(result: DispatchResult, command: str) -> str:
    return f'sent={result.sent} failed={result.failed} cmd="{command}"'


class DispatchOrchestrator:
    def __init__(
        self,
        writer: SessionWriter,
        log_store: DispatchLogStore,
        *,
        directory: Optional[PaneDirectory] = None,
        line_terminator: str = "\r",
        max_workers: int = 8,
    ) -> None:
        self._writer = writer
        self._log = log_store
        self._directory = directory
        self._terminator = line_terminator
        workers = max(1, int(max_workers))
        self._dispatch_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relaymux-dispatch")
        # Separate pool: dispatch workers block on target writes.
        self._write_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relaymux-write")

    @property
    def log_store(self) -> DispatchLogStore:
        return self._log

    def dispatch(self, parent: str, targets: Iterable[str], command: str) -> "Future[DispatchResult]":
        return self._dispatch_pool.submit(self._run, parent, list(targets), command)

    def dispatch_and_wait(self, parent: str, targets: Iterable[str], command: str) -> DispatchResult:
        return self.dispatch(parent, targets, command).result()

    def shutdown(self, *, wait: bool = True) -> None:
        self._dispatch_pool.shutdown(wait=wait)
        self._write_pool.shutdown(wait=wait)

    def _run(self, parent: str, targets: List[str], command: str) -> DispatchResult:
        log_extra = {"op": "dispatch", "parent_pane_id": parent}
        if self._directory is not None and not self._directory.contains(parent):
            logger.error("dispatch rejected: parent pane not found", extra=log_extra)
            raise DispatchError(f"parent pane not found: {parent}")

        unique: List[str] = []
        for t in targets:
            if t not in unique:
                unique.append(t)
        if not unique:
            raise DispatchError("dispatch without targets")

        payload = command + self._terminator
        pending: List[Tuple[str, "Future[None]"]] = [
            (t, self._write_pool.submit(self._writer.write, t, payload)) for t in unique
        ]

        success: List[str] = []
        failed: List[str] = []
        for target, fut in pending:
            try:
                fut.result()
            except Exception as e:
                logger.warning(
                    "relay write failed: %s", e, extra={**log_extra, "target_pane_id": target}
                )
                failed.append(target)
            else:
                success.append(target)

        entry = build_entry(parent, unique, failed, command)
        try:
            self._log.append(entry)
        except Exception as e:
            logger.error("dispatch log append failed", exc_info=True, extra=log_extra)
            raise DispatchError("dispatch log append failed") from e

        logger.info(
            "dispatched to %d pane(s): sent=%d failed=%d status=%s",
            len(unique),
            len(success),
            len(failed),
            entry.status,
            extra={**log_extra, "dispatch_id": entry.id},
        )
        return DispatchResult(success_pane_ids=success, failed_pane_ids=failed)
