from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from ..errors import InputError
from ..models.import_row import ImportRow
from ..models.validation import ValidationError, ValidationResult, ValidationWarning

"""Row validator for the bulk client import.

Checks every row independently (errors never short-circuit across rows) and,
for rows that are otherwise error-free, looks up an existing client with the
same trimmed / lower-cased (name, address). A hit is a *warning*: the check is
advisory and reserves nothing, so a concurrent writer can still create the
same client before the import runs.
"""

__all__ = [
    "ValidationRules",
    "RowValidator",
    "DuplicateLookup",
    "validate_rows",
    "check_row_count",
    "DEFAULT_APPOINTMENT_DAYS",
    "DEFAULT_TIME_PATTERN",
    "MAX_IMPORT_ROWS",
]

logger = logging.getLogger(__name__)

MAX_IMPORT_ROWS = 10_000

# Sunday is excluded: the foodbank does not run appointments on Sundays.
DEFAULT_APPOINTMENT_DAYS = frozenset(
    {"monday", "tuesday", "wednesday", "thursday", "friday", "saturday"}
)
DEFAULT_TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$"

# (name, address) -> id of an existing matching client, or None
DuplicateLookup = Callable[[str, str], "str | None"]


@dataclass(frozen=True)
class ValidationRules:
    """Immutable rule set owned by the validator."""
    appointment_days: frozenset[str] = DEFAULT_APPOINTMENT_DAYS
    appointment_time: re.Pattern[str] = re.compile(DEFAULT_TIME_PATTERN)

    @staticmethod
    def build(days: Iterable[str] | None = None, time_pattern: str | None = None) -> ValidationRules:
        """Build rules from configuration values (day names are matched case-insensitively)."""
        try:
            pattern = re.compile(time_pattern or DEFAULT_TIME_PATTERN)
        except re.error as e:
            raise ValueError(f"invalid appointment_time pattern: {e}") from e
        return ValidationRules(
            appointment_days=(
                frozenset(d.strip().lower() for d in days) if days else DEFAULT_APPOINTMENT_DAYS
            ),
            appointment_time=pattern,
        )

    def is_valid_day(self, day: str) -> bool:
        return day.strip().lower() in self.appointment_days

    def is_valid_time(self, value: str) -> bool:
        return self.appointment_time.match(value) is not None

    def day_range_label(self) -> str:
        if self.appointment_days == DEFAULT_APPOINTMENT_DAYS:
            return "Monday-Saturday"
        return ", ".join(d.title() for d in sorted(self.appointment_days, key=_day_sort_key))


_WEEK = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _day_sort_key(day: str) -> tuple[int, str]:
    return (_WEEK.index(day) if day in _WEEK else len(_WEEK), day)


def check_row_count(count: int, max_rows: int = MAX_IMPORT_ROWS) -> None:
    """Reject empty or oversized submissions (InputError)."""
    if count == 0:
        raise InputError("no client rows submitted")
    if count > max_rows:
        raise InputError(f"too many rows ({count:,}); max {max_rows:,}")


def _truncate_address(address: str, limit: int = 30) -> str:
    if len(address) > limit:
        return address[:limit] + "..."
    return address


class RowValidator:
    """Validates ImportRows against ValidationRules plus an optional duplicate lookup."""

    def __init__(
        self,
        rules: ValidationRules | None = None,
        find_duplicate: DuplicateLookup | None = None,
        max_rows: int = MAX_IMPORT_ROWS,
    ) -> None:
        self.rules = rules or ValidationRules()
        self.find_duplicate = find_duplicate
        self.max_rows = max_rows

    def row_errors(self, row: ImportRow) -> list[ValidationError]:
        """Rule errors for one row, in field order. No database access."""
        errors: list[ValidationError] = []
        if not row.name.strip():
            errors.append(ValidationError(row.row_number, "name", "Name is required"))
        if not row.address.strip():
            errors.append(ValidationError(row.row_number, "address", "Address is required"))
        if row.family_size < 1:
            errors.append(
                ValidationError(
                    row.row_number,
                    "family_size",
                    "Family size must be at least 1",
                    str(row.family_size),
                )
            )
        if row.num_children < 0:
            errors.append(
                ValidationError(
                    row.row_number,
                    "num_children",
                    "Number of children cannot be negative",
                    str(row.num_children),
                )
            )
        if row.appointment_day and not self.rules.is_valid_day(row.appointment_day):
            errors.append(
                ValidationError(
                    row.row_number,
                    "appointment_day",
                    f"Invalid day. Must be {self.rules.day_range_label()}",
                    row.appointment_day,
                )
            )
        if row.appointment_time and not self.rules.is_valid_time(row.appointment_time):
            errors.append(
                ValidationError(
                    row.row_number,
                    "appointment_time",
                    "Invalid time format. Use HH:MM (e.g., 10:30)",
                    row.appointment_time,
                )
            )
        return errors

    def duplicate_warning(self, row: ImportRow) -> ValidationWarning | None:
        if self.find_duplicate is None:
            return None
        existing_id = self.find_duplicate(row.name, row.address)
        if not existing_id:
            return None
        return ValidationWarning(
            row=row.row_number,
            field="name",
            message=(
                f"Potential duplicate: '{row.name}' at "
                f"'{_truncate_address(row.address)}' already exists"
            ),
            existing_id=str(existing_id),
        )

    def validate(self, rows: Sequence[ImportRow]) -> ValidationResult:
        check_row_count(len(rows), self.max_rows)
        errors: list[ValidationError] = []
        warnings: list[ValidationWarning] = []
        valid_count = 0
        for row in rows:
            row_errors = self.row_errors(row)
            if row_errors:
                errors.extend(row_errors)
                continue
            valid_count += 1
            warning = self.duplicate_warning(row)
            if warning is not None:
                warnings.append(warning)

        logger.debug(
            "validated rows=%d valid=%d errors=%d warnings=%d",
            len(rows),
            valid_count,
            len(errors),
            len(warnings),
        )
        return ValidationResult(
            total_rows=len(rows),
            valid_rows=valid_count,
            errors=errors,
            warnings=warnings,
        )


def validate_rows(
    rows: Sequence[ImportRow],
    find_duplicate: DuplicateLookup | None = None,
    rules: ValidationRules | None = None,
    max_rows: int = MAX_IMPORT_ROWS,
) -> ValidationResult:
    """Validate rows without persisting anything."""
    return RowValidator(rules, find_duplicate, max_rows).validate(rows)
