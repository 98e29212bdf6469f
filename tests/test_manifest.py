"""Tests for tag manifest loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from aztoolkit.config import MAX_MANIFEST_FILE_SIZE_BYTES
from aztoolkit.diff import ReconcilePolicy
from aztoolkit.manifest import ManifestLoadError, TagManifest, load_manifest

SCOPE = "/subscriptions/00000000-0000-0000-0000-000000000000/resourceGroups/rg-app"

VALID_MANIFEST = f"""
policy: overwrite-all
scopes:
  - {SCOPE}
tags:
  environment: prod
  owner: platform-team
requiredTags:
  - environment
"""


class TestTagManifest:
    """Tests for TagManifest validation."""

    def test_defaults(self) -> None:
        manifest = TagManifest(scopes=[SCOPE])

        assert manifest.policy == ReconcilePolicy.FILL_MISSING
        assert manifest.tags == {}
        assert manifest.required_tags == []

    def test_scope_must_be_arm_id(self) -> None:
        with pytest.raises(ValidationError, match="ARM resource ID"):
            TagManifest(scopes=["rg-app"])

    def test_management_group_scope(self) -> None:
        scope = "/providers/Microsoft.Management/managementGroups/platform"
        assert TagManifest(scopes=[scope]).scopes == [scope]

    def test_duplicate_scopes(self) -> None:
        """Test that scopes differing only in case are duplicates."""
        with pytest.raises(ValidationError, match="unique"):
            TagManifest(scopes=[SCOPE, SCOPE.upper()])

    def test_scopes_required(self) -> None:
        with pytest.raises(ValidationError):
            TagManifest(scopes=[])

    def test_forbidden_tag_name_character(self) -> None:
        with pytest.raises(ValidationError, match="forbidden character"):
            TagManifest(scopes=[SCOPE], tags={"cost/center": "1"})

    def test_tag_value_too_long(self) -> None:
        with pytest.raises(ValidationError, match="exceeds"):
            TagManifest(scopes=[SCOPE], tags={"note": "x" * 257})

    def test_too_many_tags(self) -> None:
        tags = {f"tag{i}": "v" for i in range(51)}
        with pytest.raises(ValidationError, match="at most 50"):
            TagManifest(scopes=[SCOPE], tags=tags)

    def test_scalar_tag_values_become_strings(self) -> None:
        manifest = TagManifest.model_validate(
            {"scopes": [SCOPE], "tags": {"cost-center": 123, "billable": True, "ratio": 0.5}}
        )

        assert manifest.tags == {"cost-center": "123", "billable": "true", "ratio": "0.5"}

    @pytest.mark.parametrize("value", [None, ["a", "b"], {"nested": "x"}])
    def test_non_scalar_tag_value_rejected(self, value: object) -> None:
        with pytest.raises(ValidationError, match="must be a string"):
            TagManifest.model_validate({"scopes": [SCOPE], "tags": {"owner": value}})

    def test_unknown_field(self) -> None:
        with pytest.raises(ValidationError):
            TagManifest.model_validate({"scopes": [SCOPE], "tagz": {}})

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValidationError):
            TagManifest.model_validate({"scopes": [SCOPE], "policy": "merge"})


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_load_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "tags.yaml"
        path.write_text(VALID_MANIFEST)

        manifest = load_manifest(path)

        assert manifest.policy == ReconcilePolicy.OVERWRITE_ALL
        assert manifest.scopes == [SCOPE]
        assert manifest.tags == {"environment": "prod", "owner": "platform-team"}
        assert manifest.required_tags == ["environment"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestLoadError, match="not found"):
            load_manifest(tmp_path / "missing.yaml")

    def test_file_too_large(self, tmp_path: Path) -> None:
        path = tmp_path / "big.yaml"
        path.write_text("#" * (MAX_MANIFEST_FILE_SIZE_BYTES + 1))

        with pytest.raises(ManifestLoadError, match="exceeding limit"):
            load_manifest(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("scopes: [unclosed")

        with pytest.raises(ManifestLoadError, match="Invalid YAML"):
            load_manifest(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ManifestLoadError, match="mapping"):
            load_manifest(path)

    def test_validation_error_wrapped(self, tmp_path: Path) -> None:
        path = tmp_path / "invalid.yaml"
        path.write_text("scopes:\n  - not-a-scope\n")

        with pytest.raises(ManifestLoadError, match="validation failed"):
            load_manifest(path)

    def test_unquoted_yaml_scalars(self, tmp_path: Path) -> None:
        """Test that YAML numbers, booleans and dates load as tag strings."""
        path = tmp_path / "tags.yaml"
        path.write_text(
            f"scopes:\n  - {SCOPE}\n"
            "tags:\n  cost-center: 123\n  billable: false\n  review-date: 2026-01-31\n"
        )

        manifest = load_manifest(path)

        assert manifest.tags == {
            "cost-center": "123",
            "billable": "false",
            "review-date": "2026-01-31",
        }

    def test_empty_yaml_tag_value(self, tmp_path: Path) -> None:
        path = tmp_path / "tags.yaml"
        path.write_text(f"scopes:\n  - {SCOPE}\ntags:\n  owner:\n")

        with pytest.raises(ManifestLoadError, match="must be a string"):
            load_manifest(path)
