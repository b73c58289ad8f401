"""Lease files so two runs never mutate the same tenant (or the ledger) at once."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
import uuid
from pathlib import Path
from types import TracebackType
from typing import Callable

from sitedeploy.exceptions import LockedError, ProvisioningError

logger = logging.getLogger(__name__)


def _load_holder(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class FileLease:
    """Exclusive lease held by creating ``path`` with ``O_EXCL``.

    A lease older than ``ttl_seconds`` is treated as abandoned. It is taken
    over by renaming it aside first, so of two runs that both saw it expire
    only one removes it. With ``wait_seconds`` the lease is polled until it
    frees up instead of failing at once.
    """

    kind = "Lease"

    def __init__(
        self,
        path: Path | str,
        name: str,
        ttl_seconds: int = 900,
        clock: Callable[[], float] = time.time,
        wait_seconds: float = 0.0,
        poll_interval: float = 0.02,
    ) -> None:
        self.path = Path(path)
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.token = uuid.uuid4().hex
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _holder(self) -> dict:
        return {"pid": os.getpid(), "host": socket.gethostname(), "acquired_at": self.clock(), "token": self.token}

    def _read_holder(self) -> dict:
        return _load_holder(self.path)

    def _expired(self, holder: dict) -> bool:
        acquired = holder.get("acquired_at")
        if not isinstance(acquired, (int, float)):
            try:
                acquired = self.path.stat().st_mtime
            except FileNotFoundError:
                return True
        return self.clock() - float(acquired) > self.ttl_seconds

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(self._holder(), handle)
        return True

    def _locked(self, holder: dict) -> LockedError:
        detail = f"pid {holder.get('pid', '?')} on {holder.get('host', '?')}" if holder else ""
        return LockedError(self.name, detail, kind=self.kind)

    def _take_over(self, expired: dict) -> None:
        """Move the expired lease aside; put it back if it turned out to be fresh."""
        aside = self.path.with_name(f"{self.path.name}.{self.token}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return
        moved = _load_holder(aside)
        if moved != expired:
            # Another run replaced the lease in between; restore it unless yet another run got there.
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.warning("Lease %s changed hands while being taken over", self.path)
            aside.unlink(missing_ok=True)
            raise self._locked(moved)
        aside.unlink(missing_ok=True)
        logger.warning("Broke expired lease %s", self.path)

    def _attempt(self) -> None:
        if self._try_create():
            return
        holder = self._read_holder()
        if not self._expired(holder):
            raise self._locked(holder)
        self._take_over(holder)
        if not self._try_create():
            raise self._locked(self._read_holder())

    def acquire(self) -> None:
        deadline = time.monotonic() + self.wait_seconds
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            while True:
                try:
                    self._attempt()
                    break
                except LockedError:
                    if time.monotonic() >= deadline:
                        raise
                    time.sleep(self.poll_interval)
        except OSError as exc:
            raise ProvisioningError(f"Cannot create lease {self.path}: {exc}", stage="lock") from exc
        self._held = True
        logger.debug("Acquired lease %s", self.path)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if self._read_holder().get("token") != self.token:
            logger.warning("Lease %s is no longer ours; leaving it in place", self.path)
            return
        self.path.unlink(missing_ok=True)
        logger.debug("Released lease %s", self.path)

    def __enter__(self) -> FileLease:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class NamespaceLock(FileLease):
    """Lease ``<lock_dir>/<namespace>.lock``; a second run fails at once with LockedError."""

    kind = "Namespace"

    def __init__(
        self,
        lock_dir: Path | str,
        namespace: str,
        ttl_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(Path(lock_dir) / f"{namespace}.lock", namespace, ttl_seconds, clock)
        self.lock_dir = Path(lock_dir)
        self.namespace = namespace


class LedgerLock(FileLease):
    """Lease ``<ledger>.lock``; waits for other runs' ledger updates to finish."""

    kind = "Ledger"

    def __init__(self, ledger_path: Path | str, ttl_seconds: int = 120, wait_seconds: float = 30.0) -> None:
        ledger_path = Path(ledger_path)
        super().__init__(
            ledger_path.with_name(f"{ledger_path.name}.lock"),
            ledger_path.name,
            ttl_seconds=ttl_seconds,
            wait_seconds=wait_seconds,
        )
