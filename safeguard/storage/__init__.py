"""
Credential persistence: one repository contract over a local SQLite store
and a remote PostgreSQL database.
"""

from .base import CredentialBackend
from .errors import (
    CredentialConflictError,
    CredentialNotFoundError,
    CredentialStoreError,
    CredentialValidationError,
    ErrorKind,
    StorageDatabaseError,
    StorageNetworkError,
    StoragePermissionError,
    UnknownStorageError,
    normalize_error,
)
from .local_backend import LocalCredentialBackend
from .remote_backend import RemoteCredentialBackend
from .repository import CredentialRepository
from .retry import RetryPolicy, run_with_retry, with_retry
from .selector import BackendSelector, ServiceDescriptor

__all__ = [
    "BackendSelector",
    "CredentialBackend",
    "CredentialConflictError",
    "CredentialNotFoundError",
    "CredentialRepository",
    "CredentialStoreError",
    "CredentialValidationError",
    "ErrorKind",
    "LocalCredentialBackend",
    "RemoteCredentialBackend",
    "RetryPolicy",
    "ServiceDescriptor",
    "StorageDatabaseError",
    "StorageNetworkError",
    "StoragePermissionError",
    "UnknownStorageError",
    "normalize_error",
    "run_with_retry",
    "with_retry",
]
