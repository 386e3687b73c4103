"""Edge provider protocol and an in-memory edge network.

The provider models a CDN that supports staging distributions bound to
a production distribution by a continuous-deployment policy.  Every
mutable resource carries an opaque revision token; conditional updates
pass the token as ``if_match`` and fail with ``PreconditionFailedError``
when it is stale.

``InMemoryEdgeNetwork`` is the bundled implementation.  It also answers
``route(production_id, headers)``, which returns the distribution a
viewer request would be served from.  Attaching or detaching a policy
does not change the production distribution's config revision; only
``apply_staging_config`` and ``update_distribution`` do.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from edgeswap.errors import (
    DependencyError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from edgeswap.models.deployment import (
    ContinuousDeploymentPolicy,
    DistributionRecord,
    DistributionRole,
    SingleHeaderPredicate,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class EdgeProvider(Protocol):
    """Operations the Distribution Manager needs from a CDN."""

    def get_distribution(self, distribution_id: str) -> DistributionRecord: ...

    def copy_distribution(
        self, source_id: str, *, origin_path: str, served_version: str, if_match: str
    ) -> DistributionRecord: ...

    def apply_staging_config(
        self, production_id: str, staging_id: str, *, if_match: str
    ) -> DistributionRecord: ...

    def delete_distribution(self, distribution_id: str) -> None: ...

    def create_policy(
        self, production_id: str, staging_id: str, predicate: SingleHeaderPredicate
    ) -> ContinuousDeploymentPolicy: ...

    def get_policy(self, policy_id: str) -> ContinuousDeploymentPolicy: ...

    def find_policy(self, production_id: str) -> ContinuousDeploymentPolicy | None: ...

    def update_policy(
        self,
        policy_id: str,
        *,
        if_match: str,
        predicate: SingleHeaderPredicate | None = None,
        enabled: bool | None = None,
    ) -> ContinuousDeploymentPolicy: ...

    def delete_policy(self, policy_id: str) -> None: ...

    def create_invalidation(self, distribution_id: str, paths: list[str]) -> str: ...


def _new_revision() -> str:
    return "E" + uuid.uuid4().hex[:12].upper()


def _new_distribution_id() -> str:
    return "E" + uuid.uuid4().hex[:13].upper()


@dataclass
class Invalidation:
    """A recorded cache invalidation request."""

    id: str
    distribution_id: str
    paths: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryEdgeNetwork:
    """Thread-safe in-memory CDN used by tests and the local simulator."""

    def __init__(self) -> None:
        self._distributions: dict[str, DistributionRecord] = {}
        self._policies: dict[str, ContinuousDeploymentPolicy] = {}
        self._invalidations: list[Invalidation] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Seeding and inspection
    # ------------------------------------------------------------------

    def create_production(
        self, served_version: str, *, distribution_id: str | None = None
    ) -> DistributionRecord:
        """Create a production distribution serving ``/{served_version}``."""
        dist_id = distribution_id or _new_distribution_id()
        record = DistributionRecord(
            id=dist_id,
            role=DistributionRole.PRODUCTION,
            config_revision=_new_revision(),
            served_version=served_version,
            origin_path=f"/{served_version}",
            domain_name=f"{dist_id.lower()}.cloudfront.net",
        )
        with self._lock:
            self._distributions[dist_id] = record
        logger.info("Created production distribution %s (%s)", dist_id, served_version)
        return record

    def update_distribution(
        self, distribution_id: str, *, served_version: str, if_match: str
    ) -> DistributionRecord:
        """Point a distribution at another version (out-of-band change)."""
        with self._lock:
            current = self.get_distribution(distribution_id)
            self._check_revision(current.id, current.config_revision, if_match)
            updated = current.model_copy(
                update={
                    "served_version": served_version,
                    "origin_path": f"/{served_version}",
                    "config_revision": _new_revision(),
                }
            )
            self._distributions[distribution_id] = updated
            return updated

    def route(self, production_id: str, headers: Mapping[str, str]) -> DistributionRecord:
        """Return the distribution that would serve a request with *headers*."""
        with self._lock:
            production = self.get_distribution(production_id)
            policy = self.find_policy(production_id)
            if policy is not None and policy.enabled and policy.predicate.matches(headers):
                return self.get_distribution(policy.staging_id)
            return production

    def list_distributions(self) -> list[DistributionRecord]:
        with self._lock:
            return list(self._distributions.values())

    def list_policies(self) -> list[ContinuousDeploymentPolicy]:
        with self._lock:
            return list(self._policies.values())

    @property
    def invalidations(self) -> list[Invalidation]:
        with self._lock:
            return list(self._invalidations)

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def get_distribution(self, distribution_id: str) -> DistributionRecord:
        with self._lock:
            record = self._distributions.get(distribution_id)
        if record is None:
            raise ResourceNotFoundError(f"Distribution not found: {distribution_id}")
        return record

    def copy_distribution(
        self, source_id: str, *, origin_path: str, served_version: str, if_match: str
    ) -> DistributionRecord:
        """Create a staging copy of *source_id* with a new origin path."""
        with self._lock:
            source = self.get_distribution(source_id)
            self._check_revision(source.id, source.config_revision, if_match)
            dist_id = _new_distribution_id()
            record = DistributionRecord(
                id=dist_id,
                role=DistributionRole.STAGING,
                config_revision=_new_revision(),
                served_version=served_version,
                origin_path=origin_path,
                domain_name=f"{dist_id.lower()}.cloudfront.net",
            )
            self._distributions[dist_id] = record
        logger.debug("Copied %s to staging %s (%s)", source_id, dist_id, origin_path)
        return record

    def apply_staging_config(
        self, production_id: str, staging_id: str, *, if_match: str
    ) -> DistributionRecord:
        """Overwrite production's origin config with staging's."""
        with self._lock:
            production = self.get_distribution(production_id)
            staging = self.get_distribution(staging_id)
            self._check_revision(production.id, production.config_revision, if_match)
            updated = production.model_copy(
                update={
                    "served_version": staging.served_version,
                    "origin_path": staging.origin_path,
                    "config_revision": _new_revision(),
                }
            )
            self._distributions[production_id] = updated
        logger.info(
            "Production %s now serves %s", production_id, updated.served_version
        )
        return updated

    def delete_distribution(self, distribution_id: str) -> None:
        with self._lock:
            self.get_distribution(distribution_id)
            for policy in self._policies.values():
                if distribution_id in (policy.staging_id, policy.production_id):
                    raise DependencyError(
                        f"Distribution {distribution_id} is still referenced "
                        f"by policy {policy.id}"
                    )
            del self._distributions[distribution_id]
        logger.debug("Deleted distribution %s", distribution_id)

    # ------------------------------------------------------------------
    # Continuous-deployment policies
    # ------------------------------------------------------------------

    def create_policy(
        self, production_id: str, staging_id: str, predicate: SingleHeaderPredicate
    ) -> ContinuousDeploymentPolicy:
        with self._lock:
            self.get_distribution(production_id)
            staging = self.get_distribution(staging_id)
            if staging.role != DistributionRole.STAGING:
                raise DependencyError(f"Distribution {staging_id} is not a staging copy")
            existing = self.find_policy(production_id)
            if existing is not None:
                raise DependencyError(
                    f"Production {production_id} already has policy {existing.id}"
                )
            policy = ContinuousDeploymentPolicy(
                id=str(uuid.uuid4()),
                production_id=production_id,
                staging_id=staging_id,
                predicate=predicate,
                enabled=True,
                revision=_new_revision(),
            )
            self._policies[policy.id] = policy
        return policy

    def get_policy(self, policy_id: str) -> ContinuousDeploymentPolicy:
        with self._lock:
            policy = self._policies.get(policy_id)
        if policy is None:
            raise ResourceNotFoundError(f"Policy not found: {policy_id}")
        return policy

    def find_policy(self, production_id: str) -> ContinuousDeploymentPolicy | None:
        with self._lock:
            for policy in self._policies.values():
                if policy.production_id == production_id:
                    return policy
        return None

    def update_policy(
        self,
        policy_id: str,
        *,
        if_match: str,
        predicate: SingleHeaderPredicate | None = None,
        enabled: bool | None = None,
    ) -> ContinuousDeploymentPolicy:
        with self._lock:
            policy = self.get_policy(policy_id)
            self._check_revision(policy.id, policy.revision, if_match)
            changes: dict[str, object] = {"revision": _new_revision()}
            if predicate is not None:
                changes["predicate"] = predicate
            if enabled is not None:
                changes["enabled"] = enabled
            updated = policy.model_copy(update=changes)
            self._policies[policy_id] = updated
        return updated

    def delete_policy(self, policy_id: str) -> None:
        with self._lock:
            self.get_policy(policy_id)
            del self._policies[policy_id]
        logger.debug("Deleted policy %s", policy_id)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def create_invalidation(self, distribution_id: str, paths: list[str]) -> str:
        with self._lock:
            self.get_distribution(distribution_id)
            invalidation = Invalidation(
                id="I" + uuid.uuid4().hex[:12].upper(),
                distribution_id=distribution_id,
                paths=list(paths),
            )
            self._invalidations.append(invalidation)
        return invalidation.id

    @staticmethod
    def _check_revision(resource_id: str, current: str, if_match: str) -> None:
        if current != if_match:
            raise PreconditionFailedError(
                f"Revision of {resource_id} is {current}, not {if_match}"
            )
