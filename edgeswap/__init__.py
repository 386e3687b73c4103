"""edgeswap: staged blue/green rollouts of static frontends on the edge.

A source change builds a new version, stands it up on a staging
distribution reachable through a single request header, waits for a
human decision, then swaps it onto production or purges it.
"""

__version__ = "0.1.0"
__description__ = (
    "Blue/green rollout of static frontends onto edge distributions "
    "with header-gated staging"
)

from edgeswap.core.orchestrator import PipelineOrchestrator
from edgeswap.runtime import Runtime, build_runtime

__all__ = ["PipelineOrchestrator", "Runtime", "build_runtime", "__version__"]
