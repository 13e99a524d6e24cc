"""
Audit Logging — client-side JSON-lines record of every API request.

One line per request: timestamp, method, path, status and duration. Files
rotate by size (``audit.log.1`` is the most recent backup). Logging is best
effort and never breaks a request.

Security Note:
    Only request metadata is recorded, never headers, bodies or tokens.
"""
import io
import csv
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger("vault_sdk.audit")

DEFAULT_LOG_PATH = Path.home() / ".lsvault" / "audit.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB
MAX_ROTATED_FILES = 5

CSV_HEADER = ("timestamp", "method", "path", "status", "durationMs")


def _parse_time(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class AuditEntry(BaseModel):
    """A single audited request."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    method: str
    path: str
    status: int
    duration_ms: int = Field(alias="durationMs")

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        _parse_time(v)
        return v

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode("utf-8")


class AuditLogger:
    """Append-only request audit log with size-based rotation."""

    def __init__(
        self,
        log_path: Optional[Union[str, Path]] = None,
        max_size: int = MAX_LOG_SIZE,
        max_files: int = MAX_ROTATED_FILES,
    ):
        self.log_path = Path(log_path).expanduser() if log_path else DEFAULT_LOG_PATH
        self.max_size = max_size
        self.max_files = max_files
        self._writer: Optional[logging.Logger] = None

    def get_log_path(self) -> Path:
        return self.log_path

    def _get_writer(self) -> logging.Logger:
        if self._writer is None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            writer = logging.getLogger(f"vault_sdk.audit.{self.log_path}")
            writer.setLevel(logging.INFO)
            writer.propagate = False
            if not writer.handlers:
                handler = RotatingFileHandler(
                    self.log_path,
                    maxBytes=self.max_size,
                    backupCount=self.max_files,
                    encoding="utf-8",
                )
                handler.setFormatter(logging.Formatter("%(message)s"))
                writer.addHandler(handler)
            self._writer = writer
        return self._writer

    def log(self, entry: AuditEntry) -> None:
        """Append entry to the audit log, rotating first if the file is full."""
        self._get_writer().info(entry.to_json())

    def close(self) -> None:
        if self._writer is None:
            return
        for handler in list(self._writer.handlers):
            handler.close()
            self._writer.removeHandler(handler)
        self._writer = None

    def read_entries(
        self,
        tail: Optional[int] = None,
        status: Optional[int] = None,
        since: Optional[Union[str, datetime]] = None,
        until: Optional[Union[str, datetime]] = None,
    ) -> list[AuditEntry]:
        """Read entries from the current log file, skipping malformed lines.

        Args:
            tail: Keep only the last N entries (applied after filtering);
                zero or less keeps all.
            status: Keep only entries with this HTTP status.
            since: Keep entries at or after this ISO-8601 time.
            until: Keep entries at or before this ISO-8601 time.
        """
        try:
            content = self.log_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        entries: list[AuditEntry] = []
        for line in content.splitlines():
            if not line.strip():
                continue
            try:
                entries.append(AuditEntry.model_validate(orjson.loads(line)))
            except (orjson.JSONDecodeError, PydanticValidationError):
                continue

        if status is not None:
            entries = [e for e in entries if e.status == status]
        if since is not None:
            since_dt = _parse_time(since)
            entries = [e for e in entries if _parse_time(e.timestamp) >= since_dt]
        if until is not None:
            until_dt = _parse_time(until)
            entries = [e for e in entries if _parse_time(e.timestamp) <= until_dt]
        if tail is not None and tail > 0:
            entries = entries[-tail:]
        return entries

    def export_csv(self, entries: list[AuditEntry]) -> str:
        """Render entries as CSV with a header row."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for e in entries:
            writer.writerow((e.timestamp, e.method, e.path, e.status, e.duration_ms))
        return buffer.getvalue()
