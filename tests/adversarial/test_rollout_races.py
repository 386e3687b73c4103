"""Adversarial tests: concurrent production changes, illegal moves, hostile events.

These tests verify that:
1. Promote never overwrites a production change made after the run started
2. No caller can move a run along an edge outside the transition table
3. Duplicate, stale, foreign and malformed events change nothing
"""

from __future__ import annotations

import pytest

from edgeswap.core.stage_machine import InvalidTransitionError, RunStateMachine
from edgeswap.errors import EventValidationError
from edgeswap.models.events import ApprovalOutcome, ApprovalStateChangedEvent
from edgeswap.models.run import (
    DoneState,
    FailedState,
    IdleState,
    PipelineRun,
    PromoteState,
    SourceState,
)
from edgeswap.models.stages import PipelineStage, RunStatus
from edgeswap.runtime import Runtime


class TestConcurrentProductionChange:
    def test_out_of_band_change_blocks_promote(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        production_id = runtime.parameters.load().production_distribution_id
        current = runtime.edge.get_distribution(production_id)
        hotfix = runtime.edge.update_distribution(
            production_id, served_version="v1-hotfix", if_match=current.config_revision
        )

        runtime.gateway.decide(run.run_id, ApprovalOutcome.ACCEPTED)
        runtime.bus.deliver()

        after = runtime.edge.get_distribution(production_id)
        assert after.served_version == "v1-hotfix"
        assert after.config_revision == hotfix.config_revision
        assert runtime.edge.invalidations == []
        assert runtime.orchestrator.get_run(run.run_id).status == RunStatus.FAILED

    def test_conflicted_staging_is_replaced_by_next_run(
        self, runtime: Runtime, run_to_approval
    ):
        first = run_to_approval(runtime)
        production_id = runtime.parameters.load().production_distribution_id
        current = runtime.edge.get_distribution(production_id)
        runtime.edge.update_distribution(
            production_id, served_version="v1-hotfix", if_match=current.config_revision
        )
        runtime.gateway.decide(first.run_id, ApprovalOutcome.ACCEPTED)
        runtime.bus.deliver()

        second = run_to_approval(runtime)
        staging_ids = {
            d.id for d in runtime.edge.list_distributions() if d.id != production_id
        }
        assert staging_ids == {second.state.staging.id}
        assert first.state.staging.id not in staging_ids
        assert len(runtime.edge.list_policies()) == 1


class TestStateMachineBypass:
    def test_source_cannot_return_to_idle(self, machine: RunStateMachine):
        run = PipelineRun(service="svc", state=SourceState(repository="r", branch="b"))
        machine.start(run)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run, IdleState())

    def test_run_must_start_in_source(self, machine: RunStateMachine):
        with pytest.raises(InvalidTransitionError):
            machine.start(PipelineRun(service="svc", state=IdleState()))

    def test_done_is_final(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        runtime.gateway.decide(run.run_id, ApprovalOutcome.ACCEPTED)
        runtime.bus.deliver()
        done = runtime.orchestrator.get_run(run.run_id)
        assert isinstance(done.state, DoneState)

        machine = RunStateMachine(runtime.ledger)
        with pytest.raises(InvalidTransitionError):
            machine.transition(done, IdleState())

    def test_approve_cannot_fail_directly(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        machine = RunStateMachine(runtime.ledger)
        with pytest.raises(InvalidTransitionError):
            machine.transition(
                run, FailedState(failed_stage=PipelineStage.APPROVE, error_code="x")
            )

    def test_promote_cannot_be_reentered(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        machine = RunStateMachine(runtime.ledger)
        promoted = machine.transition(run, PromoteState.from_approve(run.state))
        with pytest.raises(InvalidTransitionError):
            machine.transition(promoted, PromoteState.from_approve(run.state))


class TestHostileEvents:
    def test_late_rejection_after_promote(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        runtime.gateway.decide(run.run_id, ApprovalOutcome.ACCEPTED)
        runtime.bus.deliver()
        production_id = runtime.parameters.load().production_distribution_id

        runtime.gateway.decide(run.run_id, ApprovalOutcome.REJECTED)
        runtime.bus.deliver()
        assert runtime.edge.get_distribution(production_id).served_version == "v2"
        assert runtime.orchestrator.get_run(run.run_id).status == RunStatus.SUCCEEDED

    def test_approval_for_other_service(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        runtime.bus.publish(
            ApprovalStateChangedEvent(
                service="checkout", run_id=run.run_id, outcome=ApprovalOutcome.ACCEPTED
            )
        )
        runtime.bus.deliver()
        assert runtime.orchestrator.get_run(run.run_id).current_stage == PipelineStage.APPROVE

    def test_malformed_raw_event_rejected(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        raw = (
            '{"event_kind": "approval_state_changed", "service": "storefront", '
            f'"run_id": "{run.run_id}", "outcome": "maybe"}}'
        )
        with pytest.raises(EventValidationError):
            runtime.bus.publish_raw(raw)
        assert runtime.orchestrator.get_run(run.run_id).current_stage == PipelineStage.APPROVE

    def test_valid_raw_event_accepted(self, runtime: Runtime, run_to_approval):
        run = run_to_approval(runtime)
        raw = (
            '{"event_kind": "approval_state_changed", "service": "storefront", '
            f'"run_id": "{run.run_id}", "outcome": "accepted"}}'
        )
        runtime.bus.publish_raw(raw)
        runtime.bus.deliver()
        assert runtime.orchestrator.get_run(run.run_id).status == RunStatus.SUCCEEDED

    def test_replayed_source_event_after_completion(
        self, runtime: Runtime, make_source_event
    ):
        event = make_source_event()
        runtime.bus.publish(event)
        runtime.bus.deliver()
        run = runtime.orchestrator.active_run
        runtime.gateway.decide(run.run_id, ApprovalOutcome.ACCEPTED)
        runtime.bus.deliver()

        runtime.bus.publish(event)
        runtime.bus.deliver()
        assert len(runtime.orchestrator.list_runs()) == 1
        assert runtime.orchestrator.active_run is None
