"""agentpack: single-file agent packages with integrity, permissions and sandboxed runs."""

__version__ = "0.1.0"

from agentpack.codec import create_package, extract_package, modify_package, verify_package
from agentpack.integrity import generate_hashes, sha256_hex, verify_hashes
from agentpack.manifest import validate_manifest
from agentpack.permissions import PermissionGrant, check_permission

__all__ = [
    "PermissionGrant",
    "__version__",
    "check_permission",
    "create_package",
    "extract_package",
    "generate_hashes",
    "modify_package",
    "sha256_hex",
    "validate_manifest",
    "verify_hashes",
    "verify_package",
]
