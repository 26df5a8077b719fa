"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from ...models import CanonicalRecord


class BaseExporter(ABC):
    """Consumer of a reconciled record sequence; length and order are authoritative."""

    @abstractmethod
    def export(self, record: CanonicalRecord) -> None:
        """Persist a single record."""

    def export_many(self, records: Iterable[CanonicalRecord]) -> int:
        written = 0
        for record in records:
            self.export(record)
            written += 1
        return written

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["BaseExporter"]
