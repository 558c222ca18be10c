from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

"""Result models for the batched client import.

BatchResult is the per-transaction record; ImportResult aggregates them.
Counts in ImportResult are always the sums of the per-batch counts.
"""

__all__ = [
    "ImportedClient",
    "BatchResult",
    "ImportResult",
]


@dataclass(frozen=True)
class ImportedClient:
    """A client row that was inserted and whose batch committed."""
    row: int
    id: str
    barcode_id: str
    name: str


@dataclass(frozen=True)
class BatchResult:
    batch: int  # 1-based batch index
    start: int  # first row position in the submitted list (1-based, inclusive)
    end: int  # last row position (inclusive)
    success: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None  # whole-batch failure reason (begin/commit)

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class ImportResult:
    total: int
    imported: int
    skipped: int
    failed: int
    results: list[BatchResult] = field(default_factory=list)
    imported_clients: list[ImportedClient] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0

    @staticmethod
    def from_batches(
        total: int,
        batches: list[BatchResult],
        imported_clients: list[ImportedClient] | None = None,
        elapsed_seconds: float = 0.0,
    ) -> ImportResult:
        return ImportResult(
            total=total,
            imported=sum(b.success for b in batches),
            skipped=sum(b.skipped for b in batches),
            failed=sum(b.failed for b in batches),
            results=list(batches),
            imported_clients=list(imported_clients or []),
            elapsed_seconds=elapsed_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "total": self.total,
            "imported": self.imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [],
            "imported_clients": [asdict(c) for c in self.imported_clients],
        }
        for b in self.results:
            item = asdict(b)
            if item["error"] is None:
                del item["error"]
            data["results"].append(item)
        return data
