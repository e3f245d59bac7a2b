"""Tests for config loading and logging setup."""

import json
import logging
from pathlib import Path

import pytest
import yaml

from anchorline.config import AnchorlineConfig, load_config
from anchorline.logging_config import StructuredFormatter, configure_logging


def test_defaults_when_file_missing(tmp_path: Path):
    config = load_config(tmp_path / "config.yaml")
    assert config == AnchorlineConfig()
    assert config.batch.max_batch_size == 100
    assert config.commitment.enabled is False


def test_load_yaml(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump(
            {
                "operator_id": "gw-01",
                "admin_identities": ["root-admin"],
                "audit_log": str(tmp_path / "audit.jsonl"),
                "batch": {"max_batch_size": 25, "max_batch_age_seconds": 5},
                "cost": {"per_event_gas": 40000},
            }
        )
    )

    config = load_config(path)

    assert config.operator_id == "gw-01"
    assert config.admin_identities == ["root-admin"]
    assert config.audit_log == tmp_path / "audit.jsonl"
    assert config.batch.max_batch_size == 25
    assert config.batch.overflow_cap == 10_000
    assert config.cost.per_event_gas == 40000


def test_empty_yaml_gives_defaults(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == AnchorlineConfig()


def test_invalid_batch_size_rejected(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"batch": {"max_batch_size": 0}}))
    with pytest.raises(ValueError):
        load_config(path)


def test_structured_formatter_emits_json():
    record = logging.LogRecord("anchorline.test", logging.INFO, __file__, 1, "anchored %d", (3,), None)
    data = json.loads(StructuredFormatter().format(record))
    assert data["message"] == "anchored 3"
    assert data["level"] == "INFO"
    assert data["logger"] == "anchorline.test"


def test_configure_logging_installs_one_handler():
    configure_logging("DEBUG", json_format=True)
    configure_logging("WARNING")
    logger = logging.getLogger("anchorline")
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING
    assert not isinstance(logger.handlers[0].formatter, StructuredFormatter)
