from __future__ import annotations

"""Exception taxonomy shared by the import and backup/restore services.

Row-level validation problems and duplicate warnings are *data* (collected in
ValidationResult), not exceptions. Only conditions that stop an operation are
raised:

- InputError: malformed request (no rows, too many rows, bad CSV header, bad backup shape)
- PersistenceError: database failure that escalates (batch commit, restore)
- ConfigurationError: unusable configuration or unrecognised backup version
"""

__all__ = [
    "FoodbankError",
    "InputError",
    "PersistenceError",
    "ConfigurationError",
    "BackupVersionError",
]


class FoodbankError(Exception):
    """Base class for all errors raised by the foodbank core."""


class InputError(FoodbankError):
    pass


class PersistenceError(FoodbankError):
    pass


class ConfigurationError(FoodbankError):
    pass


class BackupVersionError(ConfigurationError):
    """Backup document carries an empty or unsupported version tag."""
