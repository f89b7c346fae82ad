"""
Tracking number generation.

Format: prefix + last digit of the millisecond clock + four random uppercase
alphanumerics, e.g. ``PCL-7K3QZ``. The space is small, so callers insert
under the unique constraint and regenerate on collision.
"""

import re
import secrets
import string
import time

from courier_backend.app.core.config import settings

_ALPHABET = string.ascii_uppercase + string.digits
RANDOM_SUFFIX_LENGTH = 4


def generate_tracking_number(prefix: str = None) -> str:
    prefix = settings.tracking_number_prefix if prefix is None else prefix
    timestamp_part = str(int(time.time() * 1000))[-1]
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
    return f"{prefix}{timestamp_part}{random_part}"


def tracking_number_pattern(prefix: str = None) -> re.Pattern:
    prefix = settings.tracking_number_prefix if prefix is None else prefix
    return re.compile(rf"^{re.escape(prefix)}\d[A-Z0-9]{{{RANDOM_SUFFIX_LENGTH}}}$")
