"""Typed record of the deployment-critical facts held in the config store.

Each field maps to exactly one namespaced key (see ``ParameterPaths``),
so a misspelled key is an AttributeError at import time rather than a
silent miss at deploy time.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from edgeswap.models.deployment import SingleHeaderPredicate

# Value of the staging key when no staging distribution exists.
STAGING_NONE = "none"


class ParameterPaths(BaseModel):
    """Config store key layout for one service instance."""

    model_config = ConfigDict(frozen=True)

    service: str

    @property
    def frontend_version(self) -> str:
        return f"/{self.service}/version/frontend"

    @property
    def last_built_version(self) -> str:
        return f"/{self.service}/version/last-built"

    @property
    def production_distribution_id(self) -> str:
        return f"/{self.service}/cloudfront/cfcd-production"

    @property
    def staging_distribution_id(self) -> str:
        return f"/{self.service}/cloudfront/cfcd-staging"

    @property
    def staging_cleanup_enabled(self) -> str:
        return f"/{self.service}/cloudfront/staging-cleanup-enabled"

    @property
    def single_header_predicate(self) -> str:
        return f"/{self.service}/cloudfront/single-header"

    @property
    def hosting_bucket(self) -> str:
        return f"/{self.service}/s3/website"

    def all_keys(self) -> dict[str, str]:
        """Map field name to key for every parameter."""
        return {
            name: getattr(self, name)
            for name in DeploymentParameters.model_fields
        }


class DeploymentParameters(BaseModel):
    """Cross-stage facts for one service, hydrated from the config store."""

    model_config = ConfigDict(frozen=True)

    frontend_version: str
    production_distribution_id: str
    staging_distribution_id: str = STAGING_NONE
    staging_cleanup_enabled: bool = True
    single_header_predicate: SingleHeaderPredicate = SingleHeaderPredicate()
    hosting_bucket: str = ""
    last_built_version: str = ""  # highest version any build has claimed

    @property
    def has_staging(self) -> bool:
        return self.staging_distribution_id != STAGING_NONE

    @property
    def version_base(self) -> str:
        """The version the next build increments."""
        return self.last_built_version or self.frontend_version

    def agent_environment(self, service: str) -> dict[str, str]:
        """Environment handed to the build/execution agent."""
        return {
            "SERVICE": service,
            "BUCKET_NAME": self.hosting_bucket,
            "FRONTEND_VERSION": self.frontend_version,
            "PRODUCTION_DISTRIBUTION_ID": self.production_distribution_id,
            "STAGING_DISTRIBUTION_ID": self.staging_distribution_id,
            "STAGING_DISTRIBUTION_CLEANUP_ENABLED": (
                "true" if self.staging_cleanup_enabled else "false"
            ),
            "CONTINUOUS_DEPLOYMENT_POLICY_CUSTOM_HEADER": (
                self.single_header_predicate.serialize()
            ),
        }
