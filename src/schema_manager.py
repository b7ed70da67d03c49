import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel

from edi_schema_models import TransactionSchema

logger = logging.getLogger(__name__)

_TRANSACTION_KINDS = [
    ('837', 'Claim'),
    ('835', 'Remittance'),
    ('277', 'Acknowledgment'),
    ('270', 'Eligibility Request'),
    ('271', 'Eligibility Response'),
]

class SchemaInfo(BaseModel):
    key: str       # file stem, e.g. "837.5010.X222.A1"
    name: str      # e.g. "837 Claim"
    version: str   # e.g. "5010.X222.A1"
    path: str

def describe_schema_key(key: str) -> tuple:
    """Splits a schema file stem into a display name and version string."""
    base, _, version = key.partition('.')
    kind = next((label for prefix, label in _TRANSACTION_KINDS if base.startswith(prefix)), 'Transaction')
    return f"{base} {kind}", version or 'N/A'

def load_schema_file(path: Union[str, Path]) -> TransactionSchema:
    with open(path, 'r') as f:
        schema_data = json.load(f)
    return TransactionSchema.model_validate(schema_data)


class SchemaManager:
    """
    Loads the pre-built JSON transaction schemas from a directory.
    Schemas are keyed by file name without the .json suffix.
    """

    def __init__(self, schema_base_path: Union[str, Path] = "schemas"):
        self.schema_base_path = Path(schema_base_path)
        self._schemas: Dict[str, TransactionSchema] = {}
        self._infos: Dict[str, SchemaInfo] = {}
        self._load_schemas()

    def _load_schemas(self):
        if not self.schema_base_path.exists():
            logger.warning(f"Schema base path does not exist: {self.schema_base_path}")
            return

        logger.info(f"Loading EDI schemas from: {self.schema_base_path}")

        for schema_file in sorted(self.schema_base_path.glob("*.json")):
            key = schema_file.stem
            try:
                self._schemas[key] = load_schema_file(schema_file)
                name, version = describe_schema_key(key)
                self._infos[key] = SchemaInfo(key=key, name=name, version=version, path=str(schema_file))
                logger.info(f"Loaded schema: {schema_file.name}")
            except Exception as e:
                logger.error(f"Failed to load schema {schema_file.name}: {e}")

        if not self._schemas:
            logger.warning(f"No JSON schemas found in {self.schema_base_path}")

    def get_schema(self, key: str) -> Optional[TransactionSchema]:
        """
        Get a loaded schema by key.

        Args:
            key: Schema file stem (e.g., "837.5010.X222.A1"); a trailing ".json" is tolerated

        Returns:
            TransactionSchema or None if not found
        """
        if key.endswith('.json'):
            key = key[:-len('.json')]
        schema = self._schemas.get(key)
        if schema is None:
            logger.error(f"Schema not found: {key}")
        return schema

    def list_schemas(self) -> List[SchemaInfo]:
        """Available schemas sorted by display name, then version."""
        return sorted(self._infos.values(), key=lambda info: (info.name, info.version))

    def reload_schemas(self):
        """Reload all schemas from filesystem."""
        self._schemas.clear()
        self._infos.clear()
        self._load_schemas()
