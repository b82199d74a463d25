"""JSON persistence for run journals and reports."""

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.models.resource import ResourceRegistry


class JSONStore:
    """Reads and writes JSON documents below a base directory."""

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path) if base_path else Path.cwd()
        self.logger = logging.getLogger(__name__)

    def _resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        return path if path.is_absolute() else self.base_path / path

    def write_json(
        self,
        file_path: str,
        data: Union[Dict[str, Any], List[Any]],
        indent: Optional[int] = 2,
    ) -> Path:
        """Write data atomically (temp file then rename)."""
        path = self._resolve(file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            content = json.dumps(data, indent=indent, default=self._json_serializer)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(path)
            self.logger.debug(f"JSON file written: {path}")
            return path
        except Exception as e:
            self.logger.error(f"Failed to write JSON file {path}: {str(e)}")
            raise

    def read_json(self, file_path: str) -> Union[Dict[str, Any], List[Any]]:
        path = self._resolve(file_path)
        if not path.exists():
            raise FileNotFoundError(f"JSON file not found: {path}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in file {path}: {str(e)}")
            raise

    def exists(self, file_path: str) -> bool:
        return self._resolve(file_path).exists()

    def _json_serializer(self, obj: Any) -> Any:
        """Custom JSON serializer for special types."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Path):
            return str(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return str(obj)


class RegistryJournal:
    """Persists a registry to ``<directory>/<run_tag>.json`` on every append."""

    def __init__(self, store: JSONStore, directory: str = "runs"):
        self.store = store
        self.directory = directory
        self.logger = logging.getLogger(__name__)

    def path_for(self, run_tag: str) -> str:
        return str(Path(self.directory) / f"{run_tag}.json")

    def __call__(self, registry: ResourceRegistry) -> None:
        self.store.write_json(self.path_for(registry.run_tag), registry.to_dict())

    def load(self, run_tag: str) -> Optional[ResourceRegistry]:
        """Registry saved by an earlier process, or None when there is no journal."""
        path = self.path_for(run_tag)
        if not self.store.exists(path):
            return None
        registry = ResourceRegistry.from_dict(self.store.read_json(path), listener=self)
        self.logger.info(f"Loaded {len(registry)} handles from {path}")
        return registry


def write_run_report(store: JSONStore, directory: str, summary: Dict[str, Any]) -> Path:
    """Write the run summary to ``<directory>/<run_tag>-<timestamp>.json``."""
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    return store.write_json(str(Path(directory) / f"{summary['run_tag']}-{timestamp}.json"), summary)
