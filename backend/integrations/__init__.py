"""Directory gateway integrations.

This package contains:
- Directory protocol: Normalized records and the source/target interfaces
- Authentik client: Read-only source of truth over the Authentik REST API
- LDAP client: Target directory over ldap3
- Directory registry: The configured source/target pair
"""

from integrations.directory_protocol import (
    SourceDirectory,
    SourceGroup,
    SourceUser,
    TargetDirectory,
    TargetGroup,
    TargetUser,
)
from integrations.directory_registry import DirectoryRegistry, get_directory_registry

__all__ = [
    "DirectoryRegistry",
    "SourceDirectory",
    "SourceGroup",
    "SourceUser",
    "TargetDirectory",
    "TargetGroup",
    "TargetUser",
    "get_directory_registry",
]
