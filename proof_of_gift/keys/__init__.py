"""Signing key lifecycle."""

from .manager import KEYPAIR_NAME, KeyManager
from .storage import FileKeyStore, InMemoryKeyStore, KeyStore, PostgresKeyStore, create_key_store_from_env
from .types import KeyPair

__all__ = [
    "KEYPAIR_NAME",
    "KeyManager",
    "KeyPair",
    "KeyStore",
    "InMemoryKeyStore",
    "FileKeyStore",
    "PostgresKeyStore",
    "create_key_store_from_env",
]
