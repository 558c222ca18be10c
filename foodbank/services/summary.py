from __future__ import annotations

from ..models.backup import RestoreStats
from ..models.import_result import ImportResult
from ..models.validation import ValidationResult

"""SUMMARY line rendering.

Each CLI command ends with exactly one SUMMARY line of space separated
key=value pairs, for example:

    SUMMARY import total=120 imported=70 skipped=0 failed=50 batches=3 success=false elapsed_sec=1.25

The "SUMMARY " label itself is added by the logging formatter, so the
functions here return only the part after it.
"""

__all__ = [
    "format_elapsed",
    "render_import_summary",
    "render_validation_summary",
    "render_export_summary",
    "render_restore_summary",
]


def format_elapsed(seconds: float) -> str:
    """Render seconds without scientific notation; integral values lose the decimal point."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.2f}"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def render_import_summary(result: ImportResult) -> str:
    return (
        f"import total={result.total} "
        f"imported={result.imported} "
        f"skipped={result.skipped} "
        f"failed={result.failed} "
        f"batches={len(result.results)} "
        f"success={_flag(result.success)} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )


def render_validation_summary(result: ValidationResult) -> str:
    return (
        f"validate total={result.total_rows} "
        f"valid_rows={result.valid_rows} "
        f"errors={len(result.errors)} "
        f"warnings={len(result.warnings)} "
        f"valid={_flag(result.valid)}"
    )


def render_export_summary(fmt: str, filename: str, size_bytes: int, stats: RestoreStats) -> str:
    counts = " ".join(f"{k}={v}" for k, v in stats.to_dict().items())
    return f"export format={fmt} file={filename} bytes={size_bytes} {counts}"


def render_restore_summary(stats: RestoreStats, elapsed_seconds: float = 0.0) -> str:
    counts = " ".join(f"{k}={v}" for k, v in stats.to_dict().items())
    return f"restore {counts} total={stats.total} elapsed_sec={format_elapsed(elapsed_seconds)}"
