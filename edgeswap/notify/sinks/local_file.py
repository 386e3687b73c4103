"""Local file sink: writes approval requests to JSON files.

Layout: {base_path}/{service}/{run_id}/{request_id}.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from edgeswap.core.hasher import canonical_json_bytes
from edgeswap.models.notifications import ApprovalRequest

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Writes approval requests to local JSON files.

    Parameters
    ----------
    base_path:
        Root directory for request files.  Defaults to ``.edgeswap/approvals``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".edgeswap/approvals")
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def sink_name(self) -> str:
        return "local_file"

    def accept(self, request: ApprovalRequest) -> None:
        target_dir = self._base / request.service / request.run_id
        target_dir.mkdir(parents=True, exist_ok=True)
        target_file = target_dir / f"{request.request_id}.json"
        target_file.write_bytes(canonical_json_bytes(request.model_dump(mode="json")))
        logger.debug("LocalFileSink: wrote %s", target_file)

    def list_requests(self, service: str, run_id: str | None = None) -> list[Path]:
        service_dir = self._base / service
        if run_id:
            service_dir = service_dir / run_id
        if not service_dir.exists():
            return []
        return sorted(service_dir.rglob("*.json"))

    def read_request(self, path: Path) -> ApprovalRequest:
        return ApprovalRequest.model_validate(json.loads(path.read_bytes()))
