"""
transaction_ids.py — Gateway-facing transaction identifiers

The gateway accepts letters, digits and hyphens only. Identifiers have the
shape YYMMDD-HHMMSS-XXXXX: a UTC timestamp plus five random alphanumerics
from `secrets`, so independent workers can generate them without a shared
counter.
"""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 5

TRANSACTION_UUID_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")


def generate_transaction_uuid(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{now:%y%m%d}-{now:%H%M%S}-{suffix}"


def is_valid_transaction_uuid(value: str) -> bool:
    return bool(value) and TRANSACTION_UUID_PATTERN.match(value) is not None
