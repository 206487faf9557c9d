from .credential import (
    BackendKind,
    CredentialPage,
    CredentialRecord,
    CredentialStats,
    ServiceBreakdown,
)

__all__ = [
    "BackendKind",
    "CredentialPage",
    "CredentialRecord",
    "CredentialStats",
    "ServiceBreakdown",
]
