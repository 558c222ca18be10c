from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime

"""Client barcode ID generation.

Format: FFB-YYYYMM-XXXXX, where XXXXX is drawn from an alphabet that leaves
out the look-alike glyphs 0/O and 1/I so codes can be read back by eye.

No collision check is done here. clients.barcode_id carries a UNIQUE
constraint, so a collision surfaces as a failed insert for that one row.
"""

__all__ = [
    "BARCODE_ALPHABET",
    "BARCODE_PATTERN",
    "generate_barcode_id",
]

BARCODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # A-Z without I/O, 2-9
BARCODE_PREFIX = "FFB"
CODE_LENGTH = 5
BARCODE_PATTERN = re.compile(rf"^{BARCODE_PREFIX}-\d{{6}}-[{BARCODE_ALPHABET}]{{{CODE_LENGTH}}}$")


def generate_barcode_id(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y%m")
    code = "".join(secrets.choice(BARCODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{BARCODE_PREFIX}-{stamp}-{code}"
