"""Exception types raised by the finalization pipeline."""


class WorkflowPipelineError(Exception):
    """Base class for all pipeline errors."""


class CollaboratorError(WorkflowPipelineError):
    """The LLM collaborator failed or returned an unusable response.

    Raised for transport errors, non-JSON output and schema mismatches.
    Every pipeline stage catches it and switches to its fallback path.
    """

    def __init__(self, stage: str, message: str, raw_response: str | None = None):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.raw_response = raw_response


class StoreError(WorkflowPipelineError):
    """Persisting screens, templates or instances failed."""


class SessionBusyError(WorkflowPipelineError):
    """A session is already being finalized."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is already being finalized")
        self.session_id = session_id
