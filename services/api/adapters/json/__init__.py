"""
JSON file storage adapter for the Drive proxy.
Simple file-based storage for single-instance deployments and local runs.
Not suitable for several processes writing the same file.
"""
import json
import threading
from typing import Dict, List, Optional
from pathlib import Path


class JsonAdapter:
    """
    JSON file-based key-value adapter.
    Stores the whole namespace as one JSON object under the data directory.
    Uses atomic file operations for basic consistency.
    """

    def __init__(self, data_dir: str = "data", filename: str = "settings.json"):
        """
        Initialize the JSON adapter.

        Args:
            data_dir: Directory to store the JSON file
            filename: Name of the JSON file inside data_dir
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.store_file = self.data_dir / filename
        self._lock = threading.Lock()

        # Initialize file if it doesn't exist
        if not self.store_file.exists():
            self._write_file({})

    def _read_file(self) -> Dict[str, str]:
        """Read and parse the JSON file."""
        try:
            with open(self.store_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_file(self, data: Dict[str, str]) -> None:
        """Write data to the JSON file atomically."""
        # Write to temporary file first
        tmp_file = self.store_file.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)

        # Atomic rename
        tmp_file.replace(self.store_file)

    def get(self, key: str) -> Optional[str]:
        return self._read_file().get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_file()
            data[key] = value
            self._write_file(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_file()
            if key not in data:
                return
            del data[key]
            self._write_file(data)

    def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._read_file() if k.startswith(prefix))
