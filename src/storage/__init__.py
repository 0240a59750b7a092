"""Downstream Repository sink for pushing stop place changes"""

from src.storage.repository_sink import (
    HttpRepositorySink,
    RepositoryBusyError,
    RepositorySink,
    RepositorySinkError,
)

__all__ = ["HttpRepositorySink", "RepositoryBusyError", "RepositorySink", "RepositorySinkError"]
