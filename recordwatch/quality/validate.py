"""JSON Schema validation of status payloads."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import jsonschema
import orjson


@dataclass
class ValidationResult:
    """Outcome of validating a single payload."""

    ok: bool
    errors: List[str]


class SchemaRegistry:
    """Lazily loads JSON Schemas by name from a directory."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._cache: Dict[str, Dict] = {}

    def _load(self, name: str) -> Dict:
        if name not in self._cache:
            path = self._root / f"{name}.schema.json"
            if not path.exists():
                raise FileNotFoundError(f"Schema not found for {name}: {path}")
            self._cache[name] = orjson.loads(path.read_bytes())
        return self._cache[name]

    def validate(self, name: str, payload: Dict[str, object]) -> ValidationResult:
        schema = self._load(name)
        validator = jsonschema.Draft202012Validator(schema)
        errors = [f"{error.json_path}: {error.message}" for error in validator.iter_errors(payload)]
        return ValidationResult(ok=not errors, errors=errors)
