"""Loading declared pools and saved pool state from YAML.

File size is checked before reading. Both a flat mapping and a
Kubernetes-style wrapper (apiVersion/kind/metadata/spec) are accepted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import PoolSpec, PoolState

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def _read_mapping(path: Path) -> dict[str, Any]:
    """Read a YAML file and return the spec mapping inside it."""
    if not path.exists():
        raise SpecLoadError(f"Spec file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
        return spec_data

    return raw_data


def _validate(model: type[M], data: dict[str, Any], path: Path) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e


def load_pool_spec(path: Path) -> PoolSpec:
    """Load and validate a declared pool from YAML.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    spec = _validate(PoolSpec, _read_mapping(path), path)
    logger.info("Loaded pool spec from %s", path)
    return spec


def load_pool_state(path: Path) -> PoolState:
    """Load previously saved pool state (as written by dump_pool_state).

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    return _validate(PoolState, _read_mapping(path), path)


def dump_pool_state(state: PoolState) -> str:
    """Serialize pool state to YAML."""
    data = state.model_dump(mode="json", by_alias=True, exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False)
