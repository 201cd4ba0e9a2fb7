"""Content fingerprints for embedded manifest and code text."""

import hashlib
import re
from dataclasses import dataclass

FINGERPRINT_PREFIX = "sha256-"
FINGERPRINT_PATTERN = re.compile(r"^sha256-[0-9a-f]{64}$")


@dataclass(frozen=True, slots=True)
class IntegrityRecord:
    manifest: str
    code: str


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_hashes(manifest_text: str, code_text: str) -> IntegrityRecord:
    """Fingerprint the exact texts that are embedded in (or recovered from) a package."""
    return IntegrityRecord(
        manifest=f"{FINGERPRINT_PREFIX}{sha256_hex(manifest_text)}",
        code=f"{FINGERPRINT_PREFIX}{sha256_hex(code_text)}",
    )


def verify_hashes(expected: IntegrityRecord, actual: IntegrityRecord) -> bool:
    return expected.manifest == actual.manifest and expected.code == actual.code


def is_fingerprint(value: str) -> bool:
    return bool(FINGERPRINT_PATTERN.match(value))
