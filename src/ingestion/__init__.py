"""Registry access for fetching stop place versions and change lists"""

from src.ingestion.registry_client import GraphQLRegistryClient, RegistryClient, RegistryError

__all__ = ["GraphQLRegistryClient", "RegistryClient", "RegistryError"]
