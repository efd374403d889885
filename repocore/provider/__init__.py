"""
Data provider contracts for repocore.

- Authenticator / IntegrityValidator: backend probes
- DataProxy / DataProviderPatcher: repository access and patching per backend
"""

from .contracts import INTEGRITY_OK, Authenticator, IntegrityValidator, is_integrity_ok
from .proxy import (
    DataProviderPatcher,
    DataProxy,
    ProxyParameter,
    RegistryDataProxy,
    RegistryPatcher,
)

__all__ = [
    "INTEGRITY_OK",
    "Authenticator",
    "IntegrityValidator",
    "is_integrity_ok",
    "DataProviderPatcher",
    "DataProxy",
    "ProxyParameter",
    "RegistryDataProxy",
    "RegistryPatcher",
]
