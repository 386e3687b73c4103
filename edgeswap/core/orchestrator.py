"""Pipeline orchestrator: the central coordinator for one service's runs.

The orchestrator wires the RunStateMachine, the stage registry and the
event bus into a single rollout engine:

- Source-change events start a run, or queue behind the active one.
  At most one run per service holds the staging slot at a time.
- Source, Build and Deploy run back to back.  Approve dispatches a
  prompt and suspends; an approval event resumes the run.
- Accept runs Promote and Cleanup.  Reject moves the run to RolledBack
  and publishes a ``PurgeRequestedEvent``; the Purge Controller answers
  with ``PurgeCompletedEvent`` or ``PurgeFailedEvent``.
- A stage failure ends only the current run.  ``ProvisioningError``
  holds the run in Deploy until ``retry_deploy``.
"""

from __future__ import annotations

import collections
import logging
import threading
from datetime import datetime, timedelta, timezone

from edgeswap.config import DeploySettings
from edgeswap.core.agent import ExecutionAgent
from edgeswap.core.config_store import ParameterRepository
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.event_bus import EventBus
from edgeswap.core.object_store import ObjectStore
from edgeswap.core.production_guard import enforce_production_constraints
from edgeswap.core.run_ledger import RunLedger
from edgeswap.core.stage_machine import InvalidTransitionError, RunStateMachine
from edgeswap.errors import DeploymentError, ProvisioningError
from edgeswap.models.events import (
    ApprovalOutcome,
    ApprovalStateChangedEvent,
    EventBase,
    EventKind,
    PurgeCompletedEvent,
    PurgeFailedEvent,
    PurgeRequestedEvent,
    SourceChangedEvent,
)
from edgeswap.models.run import (
    ApproveState,
    FailedState,
    IdleState,
    PipelineRun,
    PromoteState,
    RolledBackState,
    SourceState,
    StageResult,
)
from edgeswap.models.stages import PipelineStage, RunStatus, StageOutcome
from edgeswap.notify.gateway import NotificationGateway
from edgeswap.stages import STAGE_REGISTRY, StageContext, get_stage

logger = logging.getLogger(__name__)

SOURCE_REFERENCE_EVENT = "referenceUpdated"

_OUTCOME_BY_ERROR_CODE: dict[str, StageOutcome] = {
    "conflict": StageOutcome.CONFLICT,
    "dependency_error": StageOutcome.DEPENDENCY_ERROR,
    "agent_failure": StageOutcome.AGENT_FAILURE,
    "provisioning_error": StageOutcome.PROVISIONING_ERROR,
    "version_exists": StageOutcome.VERSION_EXISTS,
}


class PipelineOrchestrator:
    """Runs the rollout pipeline for one service.

    Parameters
    ----------
    settings:
        Service identity, source filter and approval timeout.
    bus:
        Event channel; the orchestrator subscribes to source, approval
        and purge-outcome events on construction.
    ledger:
        Receives every run transition.
    parameters, distributions, objects, agent, gateway:
        Stage collaborators.
    """

    def __init__(
        self,
        *,
        settings: DeploySettings,
        bus: EventBus,
        ledger: RunLedger,
        parameters: ParameterRepository,
        distributions: DistributionManager,
        objects: ObjectStore,
        agent: ExecutionAgent,
        gateway: NotificationGateway,
    ) -> None:
        enforce_production_constraints(settings)

        self._settings = settings
        self._bus = bus
        self._machine = RunStateMachine(ledger)
        self._ctx = StageContext(
            service=settings.service_name,
            parameters=parameters,
            distributions=distributions,
            objects=objects,
            agent=agent,
            gateway=gateway,
        )

        # Live runs; finished ones move to a bounded history.
        self._runs: dict[str, PipelineRun] = {}
        self._finished: collections.OrderedDict[str, PipelineRun] = collections.OrderedDict()
        self._active_run_id: str | None = None
        self._queue: collections.deque[SourceChangedEvent] = collections.deque()
        self._seen_source_events: collections.OrderedDict[str, None] = (
            collections.OrderedDict()
        )
        self._lock = threading.RLock()

        bus.subscribe(EventKind.SOURCE_CHANGED, self._on_event)
        bus.subscribe(EventKind.APPROVAL_STATE_CHANGED, self._on_event)
        bus.subscribe(EventKind.PURGE_COMPLETED, self._on_event)
        bus.subscribe(EventKind.PURGE_FAILED, self._on_event)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def service(self) -> str:
        return self._settings.service_name

    @property
    def active_run(self) -> PipelineRun | None:
        with self._lock:
            if self._active_run_id is None:
                return None
            return self._runs[self._active_run_id]

    @property
    def queued_events(self) -> list[SourceChangedEvent]:
        with self._lock:
            return list(self._queue)

    def get_run(self, run_id: str) -> PipelineRun | None:
        with self._lock:
            return self._lookup(run_id)

    def list_runs(self) -> list[PipelineRun]:
        """Live runs plus the most recent finished ones, oldest first."""
        with self._lock:
            runs = [*self._finished.values(), *self._runs.values()]
            return sorted(runs, key=lambda r: r.created_at)

    @property
    def live_run_count(self) -> int:
        with self._lock:
            return len(self._runs)

    @property
    def remembered_source_event_count(self) -> int:
        with self._lock:
            return len(self._seen_source_events)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_source_changed(self, event: SourceChangedEvent) -> PipelineRun | None:
        """Start a run for *event*, or queue it behind the active run.

        Events for another service, repository or branch, non-update
        reference events and duplicate deliveries are ignored.
        """
        with self._lock:
            if not self._matches_source(event):
                logger.debug(
                    "Ignoring source event %s for %s@%s",
                    event.event_id,
                    event.repository,
                    event.branch,
                )
                return None
            if event.event_id in self._seen_source_events:
                logger.info("Ignoring duplicate source event %s", event.event_id)
                return None
            self._remember_source_event(event.event_id)

            if self._active_run_id is not None:
                self._queue.append(event)
                logger.info(
                    "Run %s in flight; queued source event %s (%d waiting)",
                    self._active_run_id,
                    event.event_id,
                    len(self._queue),
                )
                return None

            run = self._start_run(event)
            self._drain_queue()
            return run

    def on_approval_state_changed(
        self, event: ApprovalStateChangedEvent
    ) -> PipelineRun | None:
        """Resume a suspended run with a human decision.

        Decisions for runs that are not waiting in Approve (duplicates,
        late timeouts) are ignored.
        """
        with self._lock:
            run = self._lookup(event.run_id)
            if event.service != self.service or run is None:
                logger.warning("Approval for unknown run %s ignored", event.run_id)
                return None
            if not isinstance(run.state, ApproveState):
                logger.info(
                    "Run %s is in %s; ignoring %s approval",
                    run.run_id,
                    run.current_stage.value,
                    event.outcome.value,
                )
                return run

            detail = event.decided_by or ""
            if event.comment:
                detail = f"{detail}: {event.comment}" if detail else event.comment

            if event.outcome == ApprovalOutcome.ACCEPTED:
                run = self._machine.transition(
                    run,
                    PromoteState.from_approve(run.state),
                    result=StageResult(
                        stage=PipelineStage.APPROVE,
                        outcome=StageOutcome.APPROVAL_ACCEPTED,
                        detail=detail,
                    ),
                )
                run = self._advance(run)
            else:
                rolled_back = RolledBackState.from_approve(run.state)
                run = self._machine.transition(
                    run,
                    rolled_back,
                    result=StageResult(
                        stage=PipelineStage.APPROVE,
                        outcome=StageOutcome.APPROVAL_REJECTED,
                        detail=detail,
                    ),
                )
                self._store(run)
                self._bus.publish(
                    PurgeRequestedEvent(
                        service=self.service,
                        run_id=run.run_id,
                        staging_id=rolled_back.staging.id,
                        policy_id=rolled_back.policy.id,
                        version=rolled_back.version,
                    )
                )
                logger.info("Run %s rejected; purge requested", run.run_id)

            self._store(run)
            self._drain_queue()
            return run

    def on_purge_completed(self, event: PurgeCompletedEvent) -> PipelineRun | None:
        """Mark a rolled-back run as purged and free the staging slot."""
        with self._lock:
            run = self._lookup(event.run_id)
            if run is None or not self._awaiting_purge(run):
                logger.debug("Ignoring purge completion for run %s", event.run_id)
                return run

            run = self._machine.transition(
                run,
                IdleState(purged_version=event.version),
                result=StageResult(
                    stage=run.current_stage,
                    outcome=StageOutcome.PURGED,
                    detail=f"staging for {event.version} purged",
                ),
                status=RunStatus.PURGED,
            )
            self._store(run)
            self._drain_queue()
            return run

    def on_purge_failed(self, event: PurgeFailedEvent) -> PipelineRun | None:
        """Hold a rolled-back run in Failed until a redelivered purge succeeds."""
        with self._lock:
            run = self._lookup(event.run_id)
            if run is None or not isinstance(run.state, RolledBackState):
                logger.debug("Ignoring purge failure for run %s", event.run_id)
                return run

            run = self._machine.transition(
                run,
                FailedState(
                    failed_stage=PipelineStage.ROLLED_BACK,
                    error_code=event.error_code,
                    message=event.error_message,
                    retryable=True,
                    version=run.state.version,
                    staging_id=event.staging_id,
                    policy_id=event.policy_id,
                ),
                result=StageResult(
                    stage=PipelineStage.ROLLED_BACK,
                    outcome=StageOutcome.PURGE_FAILED,
                    detail=event.error_message,
                ),
                status=RunStatus.FAILED,
            )
            self._store(run)
            return run

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def retry_deploy(self, run_id: str) -> PipelineRun:
        """Re-run Deploy for a run held by a provisioning error."""
        with self._lock:
            run = self._lookup(run_id)
            if run is None:
                raise KeyError(f"Unknown run {run_id!r}")
            last = run.last_result(PipelineStage.DEPLOY)
            if (
                run.current_stage != PipelineStage.DEPLOY
                or last is None
                or last.outcome != StageOutcome.PROVISIONING_ERROR
            ):
                raise InvalidTransitionError(
                    f"Run {run_id} is not held in deploy by a provisioning error"
                )
            logger.info("Retrying deploy for run %s", run_id)
            run = self._advance(run)
            self._drain_queue()
            return run

    def expire_approvals(self, now: datetime | None = None) -> list[str]:
        """Reject approvals that have waited longer than the configured timeout.

        The rejection goes through the gateway like a human decision, so
        it takes effect on the next ``EventBus.deliver()``.  Returns the
        ids of the runs that were timed out.
        """
        timeout = self._settings.approval_timeout_seconds
        if timeout is None:
            return []

        now = now or datetime.now(timezone.utc)
        expired: list[str] = []
        with self._lock:
            for run in self._runs.values():
                if not isinstance(run.state, ApproveState):
                    continue
                requested = run.state.approval_requested_at or run.state.entered_at
                if now - requested >= timedelta(seconds=timeout):
                    self._ctx.gateway.decide(
                        run.run_id,
                        ApprovalOutcome.REJECTED,
                        decided_by="timeout",
                        comment=f"no decision within {timeout:g}s",
                    )
                    expired.append(run.run_id)
        if expired:
            logger.warning("Approval timed out for %s", ", ".join(expired))
        return expired

    # ------------------------------------------------------------------
    # Internal: run lifecycle
    # ------------------------------------------------------------------

    def _on_event(self, event: EventBase) -> None:
        if isinstance(event, SourceChangedEvent):
            self.on_source_changed(event)
        elif isinstance(event, ApprovalStateChangedEvent):
            self.on_approval_state_changed(event)
        elif isinstance(event, PurgeCompletedEvent):
            self.on_purge_completed(event)
        elif isinstance(event, PurgeFailedEvent):
            self.on_purge_failed(event)

    def _matches_source(self, event: SourceChangedEvent) -> bool:
        return (
            event.service == self.service
            and event.repository == self._settings.repository
            and event.branch == self._settings.branch
            and event.reference_event == SOURCE_REFERENCE_EVENT
        )

    def _start_run(self, event: SourceChangedEvent) -> PipelineRun:
        run = PipelineRun(
            service=self.service,
            state=SourceState(
                repository=event.repository,
                branch=event.branch,
                commit_id=event.commit_id,
                trigger_event_id=event.event_id,
            ),
        )
        run = self._machine.start(run)
        self._active_run_id = run.run_id
        self._store(run)
        return self._advance(run)

    def _drain_queue(self) -> None:
        while self._active_run_id is None and self._queue:
            self._start_run(self._queue.popleft())

    def _advance(self, run: PipelineRun) -> PipelineRun:
        """Execute stages until the run suspends, is held, or ends."""
        while run.current_stage in STAGE_REGISTRY:
            stage = run.current_stage
            if stage == PipelineStage.APPROVE:
                run = self._request_approval(run)
                break
            run = self._execute(run)
            if run.current_stage == stage:
                break
        self._store(run)
        return run

    def _execute(self, run: PipelineRun) -> PipelineRun:
        stage = get_stage(run.current_stage)
        try:
            new_state, result = stage.run_stage(run, self._ctx)
        except ProvisioningError as exc:
            return self._machine.record(
                run,
                StageResult(
                    stage=run.current_stage,
                    outcome=StageOutcome.PROVISIONING_ERROR,
                    detail=str(exc),
                ),
            )
        except DeploymentError as exc:
            return self._fail(run, exc)

        status = RunStatus.SUCCEEDED if new_state.stage == PipelineStage.DONE else None
        return self._machine.transition(run, new_state, result=result, status=status)

    def _request_approval(self, run: PipelineRun) -> PipelineRun:
        if run.state.approval_requested_at is not None:
            return run
        try:
            new_state, result = get_stage(PipelineStage.APPROVE).run_stage(run, self._ctx)
        except DeploymentError as exc:
            # The run stays in Approve; a decision can still arrive via the gateway.
            return self._machine.record(
                run,
                StageResult(
                    stage=PipelineStage.APPROVE,
                    outcome=StageOutcome.FAILED,
                    detail=str(exc),
                ),
            )
        return self._machine.record(run.model_copy(update={"state": new_state}), result)

    def _fail(self, run: PipelineRun, exc: DeploymentError) -> PipelineRun:
        state = run.state
        staging = getattr(state, "staging", None)
        policy = getattr(state, "policy", None)
        failed = FailedState(
            failed_stage=run.current_stage,
            error_code=exc.error_code,
            message=str(exc),
            version=getattr(state, "version", ""),
            staging_id=staging.id if staging is not None else None,
            policy_id=policy.id if policy is not None else None,
        )
        return self._machine.transition(
            run,
            failed,
            result=StageResult(
                stage=run.current_stage,
                outcome=_OUTCOME_BY_ERROR_CODE.get(exc.error_code, StageOutcome.FAILED),
                detail=str(exc),
            ),
            status=RunStatus.FAILED,
        )

    @staticmethod
    def _awaiting_purge(run: PipelineRun) -> bool:
        if isinstance(run.state, RolledBackState):
            return True
        return isinstance(run.state, FailedState) and run.state.retryable

    def _lookup(self, run_id: str) -> PipelineRun | None:
        run = self._runs.get(run_id)
        if run is None:
            run = self._finished.get(run_id)
        return run

    def _store(self, run: PipelineRun) -> None:
        if not run.is_terminal:
            self._runs[run.run_id] = run
            return

        self._runs.pop(run.run_id, None)
        self._finished[run.run_id] = run
        self._finished.move_to_end(run.run_id)
        while len(self._finished) > self._settings.run_history_limit:
            self._finished.popitem(last=False)
        if self._active_run_id == run.run_id:
            self._active_run_id = None
            logger.info("Run %s finished: %s", run.run_id, run.status.value)

    def _remember_source_event(self, event_id: str) -> None:
        self._seen_source_events[event_id] = None
        while len(self._seen_source_events) > self._settings.source_dedupe_window:
            self._seen_source_events.popitem(last=False)
