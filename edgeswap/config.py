"""Runtime configuration: env-driven via pydantic-settings.

Reads from a .env file and EDGESWAP_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from edgeswap.models.deployment import SingleHeaderPredicate

DEFAULT_CONSOLE_URL_TEMPLATE = (
    "https://us-east-1.console.aws.amazon.com/cloudfront/v3/home"
    "#/distributions/{distribution_id}"
)


class DeploySettings(BaseSettings):
    """Settings for one service's rollout pipeline.

    Examples
    --------
    Override via environment::

        export EDGESWAP_SERVICE_NAME=storefront
        export EDGESWAP_BRANCH=main
        export EDGESWAP_APPROVAL_RECIPIENTS='["ops@example.com"]'
        export EDGESWAP_STAGING_CLEANUP_ENABLED=false
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EDGESWAP_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Service identity and source
    service_name: str = "frontend"
    repository: str = "frontend"
    branch: str = "main"

    # Storage paths
    ledger_path: Path = Path(".edgeswap/ledger.db")
    config_store_path: Path = Path(".edgeswap/parameters.db")
    object_store_path: Path = Path(".edgeswap/objects")
    events_path: Path = Path(".edgeswap/events")

    # Approval channel
    approval_recipients: list[str] = []
    approval_sender: str = "edgeswap@localhost"
    console_url_template: str = DEFAULT_CONSOLE_URL_TEMPLATE
    approval_timeout_seconds: float | None = None  # None = wait indefinitely

    # Continuous deployment policy
    staging_header: str = "aws-cf-cd-staging"
    staging_header_value: str = "true"
    staging_cleanup_enabled: bool = True

    # Event delivery
    max_event_deliveries: int = 5

    # In-process bookkeeping limits
    run_history_limit: int = 100  # finished runs kept for get_run/list_runs
    source_dedupe_window: int = 1000  # recent source event ids remembered

    # Seed values for a fresh service
    initial_version: str = "v1"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def single_header_predicate(self) -> SingleHeaderPredicate:
        return SingleHeaderPredicate(
            header=self.staging_header, value=self.staging_header_value
        )
