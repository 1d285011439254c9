"""Directory registry - the configured source and target gateways.

The target connection is shared by the sync orchestrator and the change
lifecycle, so the registry is created once per process.
"""

import logging
from functools import lru_cache

from integrations.authentik_client import AuthentikClient
from integrations.directory_protocol import SourceDirectory, TargetDirectory
from integrations.ldap_client import LDAPClient

logger = logging.getLogger(__name__)


class DirectoryRegistry:
    """Holds the source and target directory gateways.

    Example:
        registry = get_directory_registry()
        users = registry.source.list_users()
        registry.target.connect()
    """

    def __init__(self, source: SourceDirectory, target: TargetDirectory):
        self.source = source
        self.target = target

    def describe(self) -> dict[str, str]:
        return {
            "source": self.source.directory_name,
            "target": self.target.directory_name,
        }


@lru_cache
def get_directory_registry() -> DirectoryRegistry:
    """Create the process-wide registry from settings.

    Returns:
        A DirectoryRegistry with an AuthentikClient source and an
        LDAPClient target.
    """
    source = AuthentikClient()
    if not source.is_configured():
        logger.warning("Authentik API token not configured; source fetches will fail")
    registry = DirectoryRegistry(source=source, target=LDAPClient())
    logger.info("Directories: %(source)s -> %(target)s", registry.describe())
    return registry
