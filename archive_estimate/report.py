"""Result output: JSON lines on a stream plus the optional text report."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import TextIO

from .models import MailboxSizeResult

logger = logging.getLogger(__name__)


class ResultWriter:
    """Emit one record per mailbox and append it to the report file if configured."""

    def __init__(self, stream: TextIO, report_path: Path | None = None) -> None:
        self.stream = stream
        self.report_path = report_path
        self._report: TextIO | None = None

    def __enter__(self) -> "ResultWriter":
        if self.report_path:
            self.report_path.parent.mkdir(parents=True, exist_ok=True)
            self._report = self.report_path.open("a", encoding="utf-8")
            logger.debug("Appending results to %s", self.report_path)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._report:
            self._report.close()
            self._report = None

    def write(self, result: MailboxSizeResult) -> None:
        self.stream.write(json.dumps(result.as_record()) + "\n")
        self.stream.flush()
        if self._report:
            self._report.write(result.report_line(datetime.now()) + "\n")
            self._report.flush()
