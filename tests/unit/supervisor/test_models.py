import pytest

from vepctl.exceptions import InvalidTransitionError
from vepctl.supervisor import (
    RunResult,
    ServiceHandle,
    ServiceKind,
    ServiceOutcome,
    ServiceState,
)

from tests.conftest import FakeRuntime


def make_handle() -> ServiceHandle:
    return ServiceHandle(
        spec_id="broker",
        kind=ServiceKind.PROCESS,
        runtime_ref="1234",
        runtime=FakeRuntime("broker", []),
    )


class TestServiceHandleTransitions:
    def test_starts_in_starting_state(self) -> None:
        handle = make_handle()

        assert handle.state == ServiceState.STARTING
        assert handle.started_at
        assert handle.stopped_at is None

    @pytest.mark.parametrize(
        "path",
        [
            (ServiceState.READY, ServiceState.STOPPING, ServiceState.STOPPED),
            (ServiceState.STOPPING, ServiceState.STOPPED),
            (ServiceState.FAILED,),
        ],
    )
    def test_allows_forward_transitions(self, path: tuple[ServiceState, ...]) -> None:
        handle = make_handle()

        for state in path:
            handle.transition(state)

        assert handle.state == path[-1]

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ((ServiceState.READY,), ServiceState.STARTING),
            ((ServiceState.READY,), ServiceState.FAILED),
            ((ServiceState.STOPPING, ServiceState.STOPPED), ServiceState.READY),
            ((ServiceState.FAILED,), ServiceState.STOPPING),
            ((), ServiceState.STOPPED),
        ],
    )
    def test_rejects_backward_or_skipping_transitions(
        self, path: tuple[ServiceState, ...], target: ServiceState
    ) -> None:
        handle = make_handle()
        for state in path:
            handle.transition(state)

        with pytest.raises(InvalidTransitionError) as exc_info:
            handle.transition(target)

        assert exc_info.value.service_id == "broker"
        assert exc_info.value.target == target.value


class TestRunResult:
    def test_success_when_no_required_failure(self) -> None:
        result = RunResult(
            outcomes=[
                ServiceOutcome("broker", required=True, state=ServiceState.STOPPED),
                ServiceOutcome("exporter", required=False, error="timeout"),
            ]
        )

        assert result.success
        assert result.exit_code == 0

    def test_required_failure_is_not_success(self) -> None:
        result = RunResult(outcomes=[ServiceOutcome("broker", True, error="boom")])

        assert not result.success
        assert result.exit_code == 1

    def test_fatal_error_is_not_success(self) -> None:
        result = RunResult(fatal_error=RuntimeError("x"))

        assert not result.success

    def test_teardown_warnings_do_not_affect_success(self) -> None:
        result = RunResult(
            outcomes=[ServiceOutcome("broker", True)],
            teardown_warnings=["still running"],
        )

        assert result.success

    def test_outcome_lookup(self) -> None:
        result = RunResult(outcomes=[ServiceOutcome("broker", True)])

        assert result.outcome("broker") is result.outcomes[0]
        assert result.outcome("missing") is None
