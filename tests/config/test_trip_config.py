"""
Tests for workflow configuration loading.

Covers:
- Schema (WorkflowConfig) -- defaults, validation, immutability
- Loader (parse_workflow_config) -- YAML dict parsing
- End-to-end (get_active_config) -- bundled default set, overrides, trace log
"""

from __future__ import annotations

import dataclasses
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from trip_config import compute_checksum, get_active_config
from trip_config.loader import parse_workflow_config
from trip_config.schema import WorkflowConfig
from trip_kernel.domain.workflow import TripCategory


def _write(tmp_path, document) -> Path:
    path = tmp_path / "workflow.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


# =========================================================================
# 1. Schema
# =========================================================================


class TestWorkflowConfigSchema:

    def test_defaults(self):
        config = WorkflowConfig()
        assert config.kilometer_threshold == Decimal("50")
        assert config.distance_billed_category == TripCategory.TICKET
        assert config.strict_custom_status is False
        assert config.enforce_budget_on_project_approval is True

    def test_frozen(self):
        config = WorkflowConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.kilometer_threshold = Decimal("10")

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            WorkflowConfig(kilometer_threshold=Decimal("-1"))

    def test_version_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkflowConfig(version=0)


# =========================================================================
# 2. Loader
# =========================================================================


class TestParseWorkflowConfig:

    def test_missing_section_is_an_error(self):
        with pytest.raises(ValueError, match="workflow"):
            parse_workflow_config({"config_id": "x"})

    def test_absent_keys_take_defaults(self):
        config = parse_workflow_config({"workflow": {"kilometer_threshold": 120}})
        assert config.kilometer_threshold == Decimal("120")
        assert config.distance_billed_category == TripCategory.TICKET
        assert config.enforce_budget_on_project_approval is True

    def test_threshold_parsed_without_float_rounding(self):
        config = parse_workflow_config({"workflow": {"kilometer_threshold": "75.1"}})
        assert config.kilometer_threshold == Decimal("75.1")

    def test_non_numeric_threshold(self):
        with pytest.raises(ValueError, match="kilometer_threshold"):
            parse_workflow_config({"workflow": {"kilometer_threshold": "far"}})

    def test_boolean_threshold_is_not_a_number(self):
        with pytest.raises(ValueError):
            parse_workflow_config({"workflow": {"kilometer_threshold": True}})

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="distance_billed_category"):
            parse_workflow_config({"workflow": {"distance_billed_category": "Rail"}})

    def test_checksum_tracks_content(self):
        a = parse_workflow_config({"workflow": {"kilometer_threshold": 50}})
        b = parse_workflow_config({"workflow": {"kilometer_threshold": 50}})
        c = parse_workflow_config({"workflow": {"kilometer_threshold": 51}})
        assert a.checksum == b.checksum
        assert a.checksum != c.checksum
        assert len(a.checksum) == 64


# =========================================================================
# 3. End-to-end
# =========================================================================


class TestGetActiveConfig:

    def test_bundled_default_set(self):
        config = get_active_config()
        assert config.config_id == "default"
        assert config.version == 1
        assert config.kilometer_threshold == Decimal("50")
        assert config.distance_billed_category == TripCategory.TICKET
        assert config.strict_custom_status is False

    def test_default_load_is_deterministic(self):
        assert get_active_config().checksum == get_active_config().checksum

    def test_override_file(self, tmp_path):
        document = {
            "config_id": "strict-eu",
            "version": 3,
            "workflow": {
                "kilometer_threshold": 200,
                "distance_billed_category": "Planned",
                "strict_custom_status": True,
                "enforce_budget_on_project_approval": False,
            },
        }

        config = get_active_config(_write(tmp_path, document))

        assert config.config_id == "strict-eu"
        assert config.version == 3
        assert config.kilometer_threshold == Decimal("200")
        assert config.distance_billed_category == TripCategory.PLANNED
        assert config.strict_custom_status is True
        assert config.enforce_budget_on_project_approval is False
        assert config.checksum == compute_checksum(document)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_emits_trace_log(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "TRIP_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_set_id"] == "default"
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["kilometer_threshold"] == "50"
