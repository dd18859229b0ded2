"""
Base interfaces for persistence providers.
"""

from abc import ABC, abstractmethod
from typing import Optional


class BlobStore(ABC):
    """
    Abstract key/value store holding serialized JSON blobs.

    Implementations can keep blobs in files, memory, or any other backend.
    """

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """
        Load the blob stored under key.

        Args:
            key: Storage key (e.g., "dragon_faith_system_v27_5")

        Returns:
            Blob text or None if nothing is stored
        """
        pass

    @abstractmethod
    def save(self, key: str, blob: str) -> bool:
        """
        Store blob under key, replacing any previous value.

        Args:
            key: Storage key
            blob: Serialized JSON text

        Returns:
            True if the blob was written
        """
        pass

    def describe(self, key: str) -> str:
        """Human readable location of key, for logs."""
        return key
