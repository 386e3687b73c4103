"""Adversarial tests: production configuration guard.

The guard runs when the orchestrator is constructed, so an unsafe
production configuration can never drive a rollout.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from edgeswap.config import DeploySettings
from edgeswap.core.agent import LocalBuildAgent
from edgeswap.core.edge import InMemoryEdgeNetwork
from edgeswap.core.production_guard import (
    ProductionConfigError,
    enforce_production_constraints,
)
from edgeswap.runtime import build_runtime


def _production(**overrides) -> DeploySettings:
    values = {
        "environment": "production",
        "approval_recipients": ["ops@example.com"],
    }
    values.update(overrides)
    return DeploySettings(_env_file=None, **values)


class TestProductionGuard:
    def test_development_is_unchecked(self):
        enforce_production_constraints(DeploySettings(_env_file=None, debug=True))

    def test_valid_production_passes(self):
        enforce_production_constraints(_production())

    def test_debug_rejected(self):
        with pytest.raises(ProductionConfigError, match="debug"):
            enforce_production_constraints(_production(debug=True))

    def test_missing_recipients_rejected(self):
        with pytest.raises(ProductionConfigError, match="APPROVAL_RECIPIENTS"):
            enforce_production_constraints(_production(approval_recipients=[]))

    def test_link_template_without_placeholder_rejected(self):
        with pytest.raises(ProductionConfigError, match="distribution_id"):
            enforce_production_constraints(
                _production(console_url_template="https://console.example.com/")
            )

    def test_all_violations_reported(self):
        with pytest.raises(ProductionConfigError) as exc_info:
            enforce_production_constraints(_production(debug=True, approval_recipients=[]))
        assert "debug" in str(exc_info.value)
        assert "recipients" in str(exc_info.value)

    def test_orchestrator_refuses_unsafe_settings(self, tmp_path: Path):
        settings = _production(
            debug=True,
            ledger_path=tmp_path / "ledger.db",
            config_store_path=tmp_path / "params.db",
            object_store_path=tmp_path / "objects",
        )
        with pytest.raises(ProductionConfigError):
            build_runtime(settings, edge=InMemoryEdgeNetwork(), agent=LocalBuildAgent(tmp_path))
