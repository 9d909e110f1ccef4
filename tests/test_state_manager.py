"""Tests for the in-memory execution state store."""

import threading

import pytest

from agentflow.core.exceptions import ExecutionNotFoundError, InvalidStateTransitionError
from agentflow.core.state_manager import ALLOWED_TRANSITIONS, ExecutionStateStore, utcnow
from agentflow.models.core import (
    ExecutionStatusEnum,
    StepExecutionRecord,
    StepStatusEnum,
    StepType,
)


@pytest.fixture
def store():
    return ExecutionStateStore()


def make_record(step_id):
    return StepExecutionRecord(step_id=step_id, step_type=StepType.TOOL, start_time=utcnow())


class TestExecutionLifecycle:
    """Test creation, lookup and eviction."""

    def test_create_execution(self, store):
        execution = store.create_execution("wf-1", {"a": 1})

        assert execution.workflow_id == "wf-1"
        assert execution.status == ExecutionStatusEnum.RUNNING
        assert execution.variables == {"a": 1}
        assert execution.step_history == []
        assert execution.end_time is None
        assert store.exists(execution.id)
        assert len(store) == 1

    def test_ids_are_unique(self, store):
        ids = {store.create_execution("wf").id for _ in range(20)}
        assert len(ids) == 20

    def test_initial_variables_are_copied(self, store):
        seed = {"items": [1]}
        execution = store.create_execution("wf", seed)
        seed["items"].append(2)

        assert store.get_variables(execution.id) == {"items": [1]}

    def test_reads_return_copies(self, store):
        execution = store.create_execution("wf", {"items": [1]})

        snapshot = store.get_execution(execution.id)
        snapshot.variables["items"].append(2)
        store.get_variables(execution.id)["items"].append(3)

        assert store.get_execution(execution.id).variables == {"items": [1]}

    def test_unknown_execution(self, store):
        with pytest.raises(ExecutionNotFoundError):
            store.get_execution("missing")
        with pytest.raises(ExecutionNotFoundError):
            store.set_variable("missing", "a", 1)
        assert not store.exists("missing")

    def test_clear(self, store):
        first = store.create_execution("wf")
        store.create_execution("wf")

        assert store.clear_execution(first.id) is True
        assert store.clear_execution(first.id) is False
        assert store.clear() == 1
        assert len(store) == 0

    def test_listing(self, store):
        running = store.create_execution("a")
        paused = store.create_execution("a")
        done = store.create_execution("b")
        store.transition(paused.id, ExecutionStatusEnum.PAUSED)
        store.transition(done.id, ExecutionStatusEnum.COMPLETED)

        assert {e.id for e in store.list_active()} == {running.id, paused.id}
        assert {e.id for e in store.list_by_workflow("a")} == {running.id, paused.id}
        assert len(store.list_all()) == 3


class TestVariablesAndHistory:
    """Test variable writes and step records."""

    def test_set_and_merge_variables(self, store):
        execution = store.create_execution("wf", {"x": 1, "y": 5})

        store.set_variable(execution.id, "z", [1])
        store.merge_variables(execution.id, {"x": 2})

        assert store.get_variables(execution.id) == {"x": 2, "y": 5, "z": [1]}

    def test_append_and_update_record(self, store):
        execution = store.create_execution("wf")

        index = store.append_step_record(execution.id, make_record("a"))
        updated = store.update_step_record(execution.id, index, status=StepStatusEnum.COMPLETED, output=3)

        assert index == 0
        assert updated.status == StepStatusEnum.COMPLETED
        history = store.get_execution(execution.id).step_history
        assert history[0].output == 3

    def test_superseded_record_is_frozen(self, store):
        execution = store.create_execution("wf")
        first = store.append_step_record(execution.id, make_record("a"))
        store.append_step_record(execution.id, make_record("b"))
        store.append_step_record(execution.id, make_record("a"))

        with pytest.raises(InvalidStateTransitionError):
            store.update_step_record(execution.id, first, status=StepStatusEnum.FAILED)
        # a different step recorded after it does not freeze it
        store.update_step_record(execution.id, 1, status=StepStatusEnum.COMPLETED)

    def test_current_step(self, store):
        execution = store.create_execution("wf")
        store.set_current_step(execution.id, "step-3")
        assert store.get_execution(execution.id).current_step == "step-3"


class TestTransitions:
    """Test the status transition table."""

    @pytest.mark.parametrize("target", [
        ExecutionStatusEnum.PAUSED,
        ExecutionStatusEnum.CANCELLED,
        ExecutionStatusEnum.COMPLETED,
        ExecutionStatusEnum.FAILED,
    ])
    def test_running_can_move_anywhere(self, store, target):
        execution = store.create_execution("wf")
        assert store.transition(execution.id, target).status == target

    def test_terminal_statuses_are_final(self, store):
        for terminal in (ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.FAILED, ExecutionStatusEnum.CANCELLED):
            assert ALLOWED_TRANSITIONS[terminal] == frozenset()
            execution = store.create_execution("wf")
            store.transition(execution.id, terminal)
            for target in ExecutionStatusEnum:
                with pytest.raises(InvalidStateTransitionError):
                    store.transition(execution.id, target)

    def test_paused_cannot_complete(self, store):
        execution = store.create_execution("wf")
        store.transition(execution.id, ExecutionStatusEnum.PAUSED)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            store.transition(execution.id, ExecutionStatusEnum.COMPLETED)

        assert exc_info.value.details["current_status"] == "paused"
        assert exc_info.value.details["requested_status"] == "completed"
        assert store.get_status(execution.id) == ExecutionStatusEnum.PAUSED

    def test_allowed_from_narrows_the_table(self, store):
        execution = store.create_execution("wf")
        store.transition(execution.id, ExecutionStatusEnum.PAUSED)

        with pytest.raises(InvalidStateTransitionError):
            store.transition(
                execution.id, ExecutionStatusEnum.CANCELLED,
                allowed_from=[ExecutionStatusEnum.RUNNING]
            )

    def test_terminal_transition_sets_end_time_and_error(self, store):
        execution = store.create_execution("wf")

        failed = store.transition(execution.id, ExecutionStatusEnum.FAILED, error="boom")

        assert failed.end_time is not None
        assert failed.end_time >= failed.start_time
        assert failed.error == "boom"

    def test_pause_keeps_end_time_unset(self, store):
        execution = store.create_execution("wf")
        assert store.transition(execution.id, ExecutionStatusEnum.PAUSED).end_time is None

    def test_rejected_transition_does_not_merge_variables(self, store):
        execution = store.create_execution("wf", {"x": 1})

        with pytest.raises(InvalidStateTransitionError):
            store.transition(
                execution.id, ExecutionStatusEnum.RUNNING,
                allowed_from=[ExecutionStatusEnum.PAUSED],
                variables={"x": 2}
            )

        assert store.get_variables(execution.id) == {"x": 1}

    def test_concurrent_writers(self, store):
        execution = store.create_execution("wf")

        def write(offset):
            for i in range(100):
                store.set_variable(execution.id, f"v{offset}-{i}", i)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store.get_variables(execution.id)) == 400
