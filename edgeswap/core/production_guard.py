"""Production configuration guard: enforces hard constraints in production.

Runs once when the orchestrator is constructed and fails hard
(``ProductionConfigError``) if the settings cannot safely drive a real
rollout.  Other code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from edgeswap.config import DeploySettings

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    It must not be caught and ignored; the process should exit.
    """


def enforce_production_constraints(settings: DeploySettings) -> None:
    """Validate production-critical settings.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. At least one approval recipient must be configured, otherwise the
       Approve stage would suspend with nobody to decide.
    3. The console URL template must contain ``{distribution_id}``.
    """
    if not settings.is_production:
        return

    violations: list[str] = []

    if settings.debug:
        violations.append(
            "debug=True is not allowed in production. Set EDGESWAP_DEBUG=false."
        )

    if not settings.approval_recipients:
        violations.append(
            "No approval recipients configured. "
            "Set EDGESWAP_APPROVAL_RECIPIENTS."
        )

    if "{distribution_id}" not in settings.console_url_template:
        violations.append(
            "console_url_template must contain '{distribution_id}'."
        )

    if violations:
        msg = "Production configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
