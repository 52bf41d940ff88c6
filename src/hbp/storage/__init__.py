"""Local persistence of conversations and persona visual stories."""

from .local import LocalStore
from .manager import StorageManager, Settings, generate_title

__all__ = ["LocalStore", "StorageManager", "Settings", "generate_title"]
