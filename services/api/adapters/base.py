"""
Storage adapter interface for the Drive proxy.
Defines the contract that all key-value backends must implement.
"""

from typing import Protocol, List, Optional


class KeyValueAdapter(Protocol):
    """
    Protocol defining the interface for all storage adapters.

    This allows swapping between the in-memory store, the JSON file store,
    or any other flat key-value namespace without changing the account
    store or router code.

    NOTE:
    - Values are opaque strings; the account store JSON-encodes records.
    - Keys are flat; grouping is done by prefix (e.g. "gdrive_<id>").
    """

    def get(self, key: str) -> Optional[str]:
        """
        Fetch the value stored under `key`.

        Returns:
            The stored string, or None if the key does not exist.
        """
        ...

    def put(self, key: str, value: str) -> None:
        """Create or overwrite `key`."""
        ...

    def delete(self, key: str) -> None:
        """
        Remove `key`.

        Implementations must treat a missing key as a no-op.
        """
        ...

    def list_keys(self, prefix: str = "") -> List[str]:
        """
        Return all keys starting with `prefix`, sorted.
        """
        ...
