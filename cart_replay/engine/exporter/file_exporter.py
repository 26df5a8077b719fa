"""File based exporter supporting JSON lines and CSV."""

from __future__ import annotations

import csv
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ...models import CanonicalRecord
from .base import BaseExporter

SUPPORTED_FORMATS = ("json", "csv")


def _cell(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


class FileExporter(BaseExporter):
    """Write records to one local file per cart item."""

    def __init__(self, output_dir: Path, label: str, fmt: str, run_tag: str | None = None) -> None:
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.output_dir = output_dir
        self.format = fmt
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_tag = run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", label.strip()).strip("_")[:64] or "export"
        self.path = self.output_dir / f"{slug}-{self.run_tag}.{self._extension}"
        self._file = self.path.open("w", encoding="utf-8", newline="")
        self._csv_writer: Optional[csv.DictWriter] = None

    @property
    def _extension(self) -> str:
        return "jsonl" if self.format == "json" else "csv"

    def export(self, record: CanonicalRecord) -> None:
        payload = record.to_dict()
        if self.format == "json":
            json.dump(payload, self._file, ensure_ascii=False, default=str)
            self._file.write("\n")
            return
        if not self._csv_writer:
            self._csv_writer = csv.DictWriter(
                self._file, fieldnames=list(payload.keys()), extrasaction="ignore"
            )
            self._csv_writer.writeheader()
        self._csv_writer.writerow({key: _cell(value) for key, value in payload.items()})

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        self._file.close()


__all__ = ["FileExporter", "SUPPORTED_FORMATS"]
