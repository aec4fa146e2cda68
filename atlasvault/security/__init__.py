"""Key management and authenticated encryption."""

from .crypto import CryptoService
from .keychain import KeychainService

__all__ = ["CryptoService", "KeychainService"]
