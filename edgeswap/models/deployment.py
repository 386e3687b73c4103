"""Edge distribution and continuous-deployment policy models."""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class DistributionRole(str, Enum):
    """Which side of the blue/green pair a distribution plays."""

    PRODUCTION = "production"
    STAGING = "staging"


class DistributionRecord(BaseModel):
    """Point-in-time view of one edge distribution.

    ``config_revision`` is an opaque token (an ETag on real providers).
    It goes stale the moment anyone mutates the distribution, so callers
    must re-fetch the record before every conditional update.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    role: DistributionRole
    config_revision: str
    served_version: str
    origin_path: str = ""
    domain_name: str = ""


class SingleHeaderPredicate(BaseModel):
    """Route a request to staging iff it carries ``header: value`` exactly.

    Header names compare case-insensitively (HTTP semantics); the value
    must match byte for byte.
    """

    model_config = ConfigDict(frozen=True)

    header: str = "aws-cf-cd-staging"
    value: str = "true"

    @field_validator("value", mode="before")
    @classmethod
    def _normalise_value(cls, v: Any) -> Any:
        # The pipeline configuration historically carried a JSON boolean.
        if isinstance(v, bool):
            return "true" if v else "false"
        return v

    @field_validator("header")
    @classmethod
    def _header_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("header name must not be blank")
        return v

    def matches(self, headers: Mapping[str, str]) -> bool:
        """Return True when *headers* select the staging distribution."""
        wanted = self.header.lower()
        for name, value in headers.items():
            if name.lower() == wanted:
                return value == self.value
        return False

    def serialize(self) -> str:
        """Compact JSON form used in the config store and agent env."""
        return json.dumps(
            {"header": self.header, "value": self.value},
            separators=(",", ":"),
        )

    @classmethod
    def parse(cls, raw: str) -> SingleHeaderPredicate:
        """Inverse of ``serialize()``."""
        return cls.model_validate(json.loads(raw))


class ContinuousDeploymentPolicy(BaseModel):
    """Routing rule binding a staging distribution to production."""

    model_config = ConfigDict(frozen=True)

    id: str
    production_id: str
    staging_id: str
    predicate: SingleHeaderPredicate
    enabled: bool = True
    revision: str = ""
