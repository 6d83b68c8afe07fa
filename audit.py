"""
Audit identifiers for accepted calculations.
Persistence is not handled here: uniqueness is checked through a callable
supplied by whoever stores the records.
"""

import hashlib
import secrets
from typing import Callable, Optional

# No 0/O, 1/I/L to avoid transcription errors
PERMITTED_CHARS = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
AUDIT_ID_LENGTH = 6
MAX_ATTEMPTS = 100


class AuditIDError(RuntimeError):
    """Raised when no unused audit ID could be generated."""
    pass


def generate_random_id(length: int = AUDIT_ID_LENGTH, permitted_chars: str = PERMITTED_CHARS) -> str:
    return "".join(secrets.choice(permitted_chars) for _ in range(length))


def generate_audit_id(is_taken: Optional[Callable[[str], bool]] = None,
                      length: int = AUDIT_ID_LENGTH) -> str:
    for _ in range(MAX_ATTEMPTS):
        audit_id = generate_random_id(length)
        if is_taken is None or not is_taken(audit_id):
            return audit_id
    raise AuditIDError(f"Unable to generate audit ID after {MAX_ATTEMPTS} attempts")


def rehash_patient_hash(patient_hash: Optional[str], salt: str) -> Optional[str]:
    """SHA-256 of the client-side patient hash plus the server salt."""
    if not patient_hash:
        return None
    return hashlib.sha256((patient_hash + salt).encode("utf-8")).hexdigest()
