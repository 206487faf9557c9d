"""
Safeguard - credential storage with interchangeable local and remote backends.

Stores service/username/secret records in an embedded SQLite file or a
PostgreSQL database behind one async repository contract.
"""

__version__ = "0.1.0"

from .models import CredentialPage, CredentialRecord, CredentialStats
from .storage import BackendSelector, CredentialRepository

__all__ = [
    "BackendSelector",
    "CredentialPage",
    "CredentialRecord",
    "CredentialRepository",
    "CredentialStats",
]
