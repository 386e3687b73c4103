"""Distribution Manager: the staging/production swap protocol.

All production writes go through ``promote()``, which is a
compare-and-swap on the production config revision captured when the
run started.  Every other method touches staging resources only.
"""

from __future__ import annotations

import logging

from edgeswap.core.edge import EdgeProvider
from edgeswap.core.object_store import ObjectStore, version_prefix
from edgeswap.errors import (
    ConflictError,
    PreconditionFailedError,
    ProvisioningError,
    ResourceNotFoundError,
)
from edgeswap.models.deployment import (
    ContinuousDeploymentPolicy,
    DistributionRecord,
    SingleHeaderPredicate,
)

logger = logging.getLogger(__name__)

INVALIDATION_PATHS = ["/*"]


class DistributionManager:
    """Create, bind, promote and tear down staging distributions.

    Parameters
    ----------
    provider:
        The edge provider that owns the distributions.
    object_store:
        Where build output is published; consulted before staging is created.
    """

    def __init__(self, provider: EdgeProvider, object_store: ObjectStore) -> None:
        self._provider = provider
        self._objects = object_store

    def describe(self, distribution_id: str) -> DistributionRecord:
        """Fresh record, including the current config revision."""
        return self._provider.get_distribution(distribution_id)

    def current_policy(self, production_id: str) -> ContinuousDeploymentPolicy | None:
        return self._provider.find_policy(production_id)

    # ------------------------------------------------------------------
    # Staging lifecycle
    # ------------------------------------------------------------------

    def create_staging(self, version: str, *, production_id: str) -> DistributionRecord:
        """Copy production into a staging distribution serving ``/{version}``.

        Raises
        ------
        ProvisioningError
            If nothing has been published under ``{version}/`` yet, or the
            provider rejects the copy.
        """
        prefix = version_prefix(version)
        if not self._objects.exists_prefix(prefix):
            raise ProvisioningError(
                f"Object store prefix {prefix!r} is empty; publish before deploy"
            )

        production = self.describe(production_id)
        try:
            staging = self._provider.copy_distribution(
                production.id,
                origin_path=f"/{version}",
                served_version=version,
                if_match=production.config_revision,
            )
        except (PreconditionFailedError, ResourceNotFoundError) as exc:
            raise ProvisioningError(
                f"Could not copy {production_id} to staging: {exc}"
            ) from exc

        logger.info(
            "Created staging distribution %s for version %s", staging.id, version
        )
        return staging

    def bind_policy(
        self,
        staging: DistributionRecord,
        production: DistributionRecord,
        predicate: SingleHeaderPredicate,
    ) -> ContinuousDeploymentPolicy:
        """Route requests matching *predicate* on production to *staging*.

        Binding the same staging with the same predicate is a no-op.  A
        different predicate updates the policy in place; a policy that
        points at some other staging distribution is replaced.
        """
        existing = self._provider.find_policy(production.id)
        if existing is not None and existing.staging_id == staging.id:
            if existing.predicate == predicate and existing.enabled:
                logger.debug("Policy %s already bound; nothing to do", existing.id)
                return existing
            logger.info("Updating predicate of policy %s", existing.id)
            return self._provider.update_policy(
                existing.id,
                if_match=existing.revision,
                predicate=predicate,
                enabled=True,
            )

        if existing is not None:
            logger.warning(
                "Replacing policy %s bound to stale staging %s",
                existing.id,
                existing.staging_id,
            )
            self._provider.delete_policy(existing.id)

        policy = self._provider.create_policy(production.id, staging.id, predicate)
        logger.info(
            "Bound policy %s: %s=%s -> %s",
            policy.id,
            predicate.header,
            predicate.value,
            staging.id,
        )
        return policy

    def promote(
        self, policy: ContinuousDeploymentPolicy, baseline_revision: str
    ) -> str:
        """Swap staging's config onto production and return its new revision.

        Raises
        ------
        ConflictError
            If production's revision differs from *baseline_revision*, or
            moves between the check and the write.
        """
        production = self.describe(policy.production_id)
        if production.config_revision != baseline_revision:
            raise ConflictError(
                f"Production {production.id} changed since the run started",
                expected=baseline_revision,
                actual=production.config_revision,
            )

        try:
            updated = self._provider.apply_staging_config(
                production.id, policy.staging_id, if_match=production.config_revision
            )
        except PreconditionFailedError as exc:
            raise ConflictError(
                f"Production {production.id} changed during promote: {exc}",
                expected=production.config_revision,
            ) from exc

        fresh_policy = self._provider.get_policy(policy.id)
        self._provider.update_policy(
            fresh_policy.id, if_match=fresh_policy.revision, enabled=False
        )
        invalidation_id = self._provider.create_invalidation(
            production.id, INVALIDATION_PATHS
        )
        logger.info(
            "Promoted %s onto %s (revision %s, invalidation %s)",
            policy.staging_id,
            production.id,
            updated.config_revision,
            invalidation_id,
        )
        return updated.config_revision

    def delete_staging(self, staging_id: str | None, policy_id: str | None) -> None:
        """Delete the policy, then the staging distribution.

        Targets that no longer exist count as already deleted, so calling
        this twice converges on the same end state.
        """
        if policy_id:
            try:
                self._provider.delete_policy(policy_id)
            except ResourceNotFoundError:
                logger.debug("Policy %s already gone", policy_id)
        if staging_id:
            try:
                self._provider.delete_distribution(staging_id)
            except ResourceNotFoundError:
                logger.debug("Staging distribution %s already gone", staging_id)
        logger.info("Staging resources deleted (staging=%s, policy=%s)", staging_id, policy_id)
