"""Tag manifest loading with validation.

A manifest declares the tags a set of scopes must carry and the policy
used to converge them:

```yaml
policy: fill-missing
scopes:
  - /subscriptions/00000000-0000-0000-0000-000000000000/resourceGroups/rg-app
tags:
  environment: prod
  owner: platform-team
  cost-center: 4711
requiredTags:
  - environment
  - owner
```

Unquoted numbers, booleans and dates in tag values are converted to
strings: `cost-center: 4711` becomes "4711" and `billable: true` becomes
"true". Quote values whose exact spelling matters, such as `"1.50"`.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .diff import ReconcilePolicy

logger = logging.getLogger(__name__)

VALID_SCOPE_PREFIXES = ("/subscriptions/", "/providers/microsoft.management/")

# ARM limits
MAX_TAGS_PER_RESOURCE = 50
MAX_TAG_NAME_LENGTH = 512
MAX_TAG_VALUE_LENGTH = 256
FORBIDDEN_TAG_NAME_CHARS = set("<>%&\\?/")


class ManifestLoadError(Exception):
    """Raised when a manifest cannot be loaded or fails validation."""

    pass


class TagManifest(BaseModel):
    """Desired tags for a list of scopes."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    policy: ReconcilePolicy = ReconcilePolicy.FILL_MISSING
    scopes: list[str] = Field(min_length=1)
    tags: dict[str, str] = Field(default_factory=dict)
    required_tags: list[str] = Field(default_factory=list, alias="requiredTags")

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: list[str]) -> list[str]:
        for scope in v:
            if not scope.lower().startswith(VALID_SCOPE_PREFIXES):
                raise ValueError(f"scope must be an ARM resource ID: {scope}")
        if len({scope.lower() for scope in v}) != len(v):
            raise ValueError("scopes must be unique")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tag_values(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        coerced = {}
        for name, value in v.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (int, float, datetime.date)):
                value = str(value)
            elif not isinstance(value, str):
                raise ValueError(
                    f"tag value for {name!r} must be a string, got {type(value).__name__}"
                )
            coerced[str(name)] = value
        return coerced

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: dict[str, str]) -> dict[str, str]:
        if len(v) > MAX_TAGS_PER_RESOURCE:
            raise ValueError(f"at most {MAX_TAGS_PER_RESOURCE} tags are allowed")
        for name, value in v.items():
            if not name or len(name) > MAX_TAG_NAME_LENGTH:
                raise ValueError(f"tag name length must be 1-{MAX_TAG_NAME_LENGTH}: {name!r}")
            if FORBIDDEN_TAG_NAME_CHARS & set(name):
                raise ValueError(f"tag name contains a forbidden character: {name!r}")
            if len(value) > MAX_TAG_VALUE_LENGTH:
                raise ValueError(f"tag value for {name!r} exceeds {MAX_TAG_VALUE_LENGTH} chars")
        return v


def load_manifest(path: Path) -> TagManifest:
    """Load and validate a tag manifest from YAML.

    Raises:
        ManifestLoadError: If the file is missing, too large, not YAML,
            or fails validation.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Cannot stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file {path} is {file_size} bytes, "
            f"exceeding limit of {MAX_MANIFEST_FILE_SIZE_BYTES}"
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ManifestLoadError(f"Cannot read manifest file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ManifestLoadError(f"Manifest {path} must be a mapping")

    try:
        manifest = TagManifest.model_validate(raw)
    except ValidationError as e:
        raise ManifestLoadError(f"Manifest validation failed for {path}:\n{e}") from e

    logger.info(
        "Manifest loaded",
        extra={
            "path": str(path),
            "policy": manifest.policy.value,
            "scopes": len(manifest.scopes),
            "tags": len(manifest.tags),
        },
    )
    return manifest
