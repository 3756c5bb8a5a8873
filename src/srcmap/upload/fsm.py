"""Upload job lifecycle finite state machine.

Each job gets its own FSM instance when it is picked up by the
orchestrator. The FSM guards transition legality only; it performs no I/O
and has no callbacks. A job that reaches a final state has produced its
one and only :class:`~srcmap.models.UploadStatus`.
"""

from __future__ import annotations

from statemachine import State, StateMachine

from srcmap.models import UploadStatus


class JobLifecycleSM(StateMachine):
    """Lifecycle of a single sourcemap upload.

    States:
        pending          -- Job constructed, not yet offered to the scheduler.
        validating       -- External validator is inspecting the job.
        building_payload -- Multipart payload is being assembled.
        uploading        -- Retry loop around the transport call in flight.
        skipped          -- Validation rejected the job, or an unexpected
                            error occurred before uploading.
        success          -- Upload accepted (or dry run).
        failure          -- Terminal HTTP error or attempts exhausted.
    """

    pending = State("pending", initial=True, value="pending")
    validating = State("validating", value="validating")
    building_payload = State("building_payload", value="building_payload")
    uploading = State("uploading", value="uploading")
    skipped = State("skipped", final=True, value="skipped")
    success = State("success", final=True, value="success")
    failure = State("failure", final=True, value="failure")

    start_validation = pending.to(validating)
    accept = validating.to(building_payload)
    skip = validating.to(skipped) | building_payload.to(skipped)
    start_upload = building_payload.to(uploading)
    complete_dry_run = building_payload.to(success)
    complete_upload = uploading.to(success)
    fail_upload = uploading.to(failure)

    @property
    def status(self) -> UploadStatus | None:
        """Outcome once a final state is reached, ``None`` before."""
        return _FINAL_STATUS.get(self.current_state.value)


_FINAL_STATUS: dict[str, UploadStatus] = {
    "skipped": UploadStatus.SKIPPED,
    "success": UploadStatus.SUCCESS,
    "failure": UploadStatus.FAILURE,
}


def create_fsm() -> JobLifecycleSM:
    """Create an FSM instance in the ``pending`` state."""
    return JobLifecycleSM()
