"""
GED Audit Trail — Structured JSON file-based logging with async queue.

Implements:
- FileLogger: Per-object-type, per-category log files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush
- Entry builders for folder, document, mail, notification and security events
- LogRetentionManager: delete/compress old files

Services push entries fire-and-forget; a failed push never blocks the
operation that produced it.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("ged.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "folders": ["execution", "security"],
    "documents": ["execution", "security"],
    "mails": ["execution", "security"],
    "notifications": ["execution"],
    "system": ["execution", "security"],
}

DEFAULT_RETENTION = {
    "execution": 90,
    "security": 365,
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"), ensure_ascii=False)


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.
    Files rotate daily: logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            file_path = str(self._resolve_path(entry.object_type, entry.category))
            grouped[file_path].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Query log entries for a given object_type/category.

        Args:
            object_type: "folders", "documents", "mails", ...
            category: "execution" or "security".
            start_date: Earliest date to include (defaults to 7 days ago).
            end_date: Latest date to include (defaults to today).
            filters: Exact-equality filters on top-level keys (e.g. user_id, action).
            limit: Max number of entries to return.

        Returns:
            Matching entries, newest first.
        """
        if end_date is None:
            end_date = date.today()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        log_base = self._log_dir / object_type / category
        if not log_base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = end_date
        while current >= start_date and len(results) < limit:
            day_entries: List[Dict[str, Any]] = []
            file_path = log_base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    day_entries.extend(self._parse_lines(file_path, f, filters))
            gz_path = file_path.with_suffix(".jsonl.gz")
            if gz_path.exists():
                with gzip.open(gz_path, "rt", encoding="utf-8") as f:
                    day_entries.extend(self._parse_lines(gz_path, f, filters))
            # Lines within a file are chronological
            day_entries.reverse()
            results.extend(day_entries[: limit - len(results)])
            current -= timedelta(days=1)

        return results

    @staticmethod
    def _parse_lines(
        path: Path,
        lines: Any,
        filters: Optional[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed log line in %s", path)
                continue
            if filters and not all(data.get(k) == v for k, v in filters.items()):
                continue
            entries.append(data)
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. A background thread flushes to FileLogger
    every flush_interval_ms OR when flush_batch_size entries accumulate,
    whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        """Start the background flush thread."""
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="ged-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """
        Push a log entry to the queue. Non-blocking.

        Returns:
            True if queued, False if dropped (queue full).
        """
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def flush(self) -> None:
        """Write everything queued so far, synchronously."""
        self._drain()

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
                continue

        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while not self._queue.empty():
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


def emit(queue: Optional[AsyncLogQueue], entry: LogEntry) -> bool:
    """
    Fire-and-forget push used by the services.

    Never raises: a missing queue or a failed push is logged and reported
    as False.
    """
    if queue is None:
        return False
    try:
        pushed = queue.push(entry)
    except Exception as e:
        logger.warning(f"Audit push failed for {entry.object_type}/{entry.data.get('action')}: {e}")
        return False
    if not pushed:
        logger.warning(f"Audit queue full, dropped {entry.object_type}/{entry.data.get('action')}")
    return pushed


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    action: str,
    level: str,
    details: str,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "action": action,
        "details": details,
    }
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def log_folder_event(
    action: str,
    details: str,
    user_id: Optional[Any] = None,
    folder_id: Optional[int] = None,
    folder_code: Optional[str] = None,
) -> LogEntry:
    """Folder created / updated / deleted / seeded."""
    data = _base_entry(
        action, "INFO", details, user_id,
        folder_id=folder_id, folder_code=folder_code,
    )
    return LogEntry("folders", "execution", data)


def log_document_event(
    action: str,
    details: str,
    user_id: Optional[Any] = None,
    document_id: Optional[int] = None,
    document_code: Optional[str] = None,
    folder_id: Optional[int] = None,
) -> LogEntry:
    """Document created / updated / moved / deleted / restored / purged."""
    data = _base_entry(
        action, "INFO", details, user_id,
        document_id=document_id, document_code=document_code, folder_id=folder_id,
    )
    return LogEntry("documents", "execution", data)


def log_mail_event(
    action: str,
    details: str,
    user_id: Optional[Any] = None,
    mail_id: Optional[int] = None,
    mail_code: Optional[str] = None,
    status: Optional[str] = None,
) -> LogEntry:
    """Mail created / status changed / archived."""
    data = _base_entry(
        action, "INFO", details, user_id,
        mail_id=mail_id, mail_code=mail_code, status=status,
    )
    return LogEntry("mails", "execution", data)


def log_notification_event(
    action: str,
    details: str,
    user_id: Optional[Any] = None,
    mail_id: Optional[int] = None,
    level: str = "INFO",
) -> LogEntry:
    """Responsible set/removed, mail notified, notifications read."""
    data = _base_entry(action, level, details, user_id, mail_id=mail_id)
    return LogEntry("notifications", "execution", data)


def log_security_event(
    action: str,
    details: str,
    object_type: str,
    user_id: Optional[Any] = None,
    authority_level: Optional[int] = None,
    required_level: Optional[int] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Denied mutation or access."""
    data = _base_entry(
        action, level, details, user_id,
        authority_level=authority_level, required_level=required_level,
    )
    target = object_type if object_type in OBJECT_TYPE_CATEGORIES else "system"
    if "security" not in OBJECT_TYPE_CATEGORIES[target]:
        target = "system"
    return LogEntry(target, "security", data)


def log_system_event(
    action: str,
    details: str = "",
    level: str = "INFO",
) -> LogEntry:
    """Startup, shutdown, initialisation."""
    return LogEntry("system", "execution", _base_entry(action, level, details))


# ---------------------------------------------------------------------------
# Log Cleanup / Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """Deletes log files past retention and gzips files past compress_after_days."""

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = retention_days or DEFAULT_RETENTION.copy()
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """
        Run retention cleanup across all log directories.

        Returns:
            Dict with counts: {"deleted": N, "compressed": M}
        """
        deleted = 0
        compressed = 0
        today = today or date.today()

        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                cat_dir = self._log_dir / obj_type / cat
                if not cat_dir.exists():
                    continue

                retention = self._retention.get(cat, 90)

                for file_path in cat_dir.iterdir():
                    if not file_path.is_file():
                        continue

                    file_date = self._parse_file_date(file_path)
                    if file_date is None:
                        continue

                    age_days = (today - file_date).days

                    if age_days > retention:
                        file_path.unlink()
                        deleted += 1
                        continue

                    if age_days > self._compress_after and file_path.suffix == ".jsonl":
                        self._compress_file(file_path)
                        compressed += 1

        result = {"deleted": deleted, "compressed": compressed}
        logger.info(f"Log cleanup: {result}")
        return result

    @staticmethod
    def _parse_file_date(file_path: Path) -> Optional[date]:
        """Extract date from 2026-02-12.jsonl or 2026-02-12.jsonl.gz."""
        try:
            return date.fromisoformat(file_path.name.split(".")[0])
        except ValueError:
            return None

    @staticmethod
    def _compress_file(file_path: Path) -> None:
        gz_path = file_path.with_suffix(file_path.suffix + ".gz")
        try:
            with open(file_path, "rb") as f_in:
                with gzip.open(gz_path, "wb") as f_out:
                    shutil.copyfileobj(f_in, f_out)
            file_path.unlink()
        except OSError as e:
            logger.error(f"Failed to compress {file_path}: {e}")
            if gz_path.exists():
                gz_path.unlink()


def init_audit_queue(
    log_dir: str,
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Build and start an audit queue. The caller owns it and must stop() it."""
    queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    queue.start()
    return queue
