"""YAML reading and JSON Schema validation shared by config and storage."""

from __future__ import annotations

import json
from collections.abc import Hashable
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators


_BOOL_TAG = "tag:yaml.org,2002:bool"


class DuplicateKeyError(yaml.YAMLError):
    """Raised by the loader for a repeated mapping key."""


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate keys.

    YAML 1.1 booleans (yes/no/on/off) are left as strings; callers normalise
    booleans explicitly with `normalize_bool`.
    """

    yaml_implicit_resolvers = {
        first_char: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
        for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise DuplicateKeyError(f"Duplicate key '{key}' in YAML document")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@lru_cache(maxsize=None)
def load_schema_validator(name: str) -> Any:
    schema_text = resources.files("anywake.schemas").joinpath(name).read_text(encoding="utf-8")
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def validation_message(exc: ValidationError) -> str:
    path = ".".join(str(p) for p in exc.path)
    where = f" ({path})" if path else ""
    return f"{where}: {exc.message}"


def read_yaml(path: Path, error_cls: type[Exception]) -> dict[str, Any] | None:
    """Read a YAML mapping, returning None for an empty document."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise error_cls(f"Could not read {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise error_cls(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return None
    if not isinstance(loaded, dict):
        raise error_cls(f"{path} must contain a mapping at root")
    return loaded


def normalize_bool(value: Any, *, context: str, error_cls: type[Exception]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise error_cls(f"{context} must be boolean true/false")
