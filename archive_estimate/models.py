"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from .errors import ExitCode

SEARCH_FOLDER_TYPE = "#microsoft.graph.mailSearchFolder"


@dataclass
class FolderDescriptor:
    """One folder in a mailbox hierarchy."""

    folder_id: str
    display_name: str
    folder_type: str
    parent_id: Optional[str] = None
    child_folder_count: int = 0

    @property
    def is_search_folder(self) -> bool:
        return self.folder_type == SEARCH_FOLDER_TYPE


@dataclass
class ItemSizeRecord:
    """Size and creation time for a single item; size is None when unreadable."""

    item_id: str
    size: Optional[int]
    created: Optional[datetime]


@dataclass
class MailboxSizeResult:
    """Per-mailbox estimate, or the failure that prevented one."""

    mailbox: str
    size_mb: Optional[int] = None
    total_bytes: int = 0
    folders: int = 0
    items: int = 0
    unreadable_items: int = 0
    error: Optional[str] = None
    exit_code: int = ExitCode.OK

    @property
    def failed(self) -> bool:
        return self.error is not None

    def as_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["exit_code"] = int(self.exit_code)
        return record

    def report_line(self, timestamp: datetime) -> str:
        stamp = timestamp.strftime("%Y-%m-%d %H:%M:%S")
        if self.failed:
            return f"{stamp}\t{self.mailbox}\tFAILED\t{self.error}"
        return f"{stamp}\t{self.mailbox}\t{self.size_mb} MB"


@dataclass
class RunSummary:
    """Aggregated outcome of a whole run."""

    results: list[MailboxSizeResult] = field(default_factory=list)
    errors: int = 0
    unreadable_items: int = 0

    def record_error(self) -> None:
        self.errors += 1

    def add(self, result: MailboxSizeResult) -> None:
        self.results.append(result)
        self.unreadable_items += result.unreadable_items

    @property
    def failures(self) -> list[MailboxSizeResult]:
        return [result for result in self.results if result.failed]

    @property
    def exit_code(self) -> int:
        failures = self.failures
        return int(failures[0].exit_code) if failures else int(ExitCode.OK)
