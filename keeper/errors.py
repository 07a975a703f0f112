"""Exception types raised across keeper components."""


class KeeperError(Exception):
    """Base class for keeper errors."""


class InferenceError(KeeperError):
    """The inference provider failed or returned an unusable response."""


class EmbeddingError(InferenceError):
    """An embedding request failed or returned the wrong number of vectors."""


class AgentBusyError(KeeperError):
    """The agent already has an execution in flight."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is currently executing")
        self.agent_id = agent_id


class JobNotFoundError(KeeperError):
    """No background job exists with the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ArtifactValidationError(KeeperError):
    """A lesson artifact is missing required fields or has out-of-range scores."""
