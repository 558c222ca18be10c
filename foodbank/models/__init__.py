"""Domain models for the foodbank import and backup/restore core."""

from .backup import (
    COLLECTIONS,
    AttendanceBackup,
    AuditLogBackup,
    Backup,
    ClientBackup,
    RegistrationBackup,
    RestoreStats,
    StaffBackup,
    VerificationBackup,
)
from .error_record import ErrorRecord
from .import_result import BatchResult, ImportedClient, ImportResult
from .import_row import ImportRow
from .validation import ValidationError, ValidationResult, ValidationWarning

__all__ = [
    # Import pipeline
    "ImportRow",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "BatchResult",
    "ImportResult",
    "ImportedClient",
    # Backup / restore
    "Backup",
    "StaffBackup",
    "ClientBackup",
    "AttendanceBackup",
    "AuditLogBackup",
    "RegistrationBackup",
    "VerificationBackup",
    "RestoreStats",
    "COLLECTIONS",
    # Logging
    "ErrorRecord",
]
