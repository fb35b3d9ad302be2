"""Credential storage, expiry bookkeeping and transparent token renewal."""

from medialog.auth.credentials import Credential, CredentialManager, CredentialState

__all__ = ["Credential", "CredentialManager", "CredentialState"]
