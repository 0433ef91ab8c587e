"""Error taxonomy for flow compilation and context transitions.

Every error raised by the engine derives from FlowError, which tells the
caller whether retrying the same operation can succeed:

- NotFound: no such flow or no live revision (recoverable)
- EmptyFlowError: a flow without nodes cannot be started
- CompileError: malformed document, unusable until re-authored
- DanglingReference: a transition points at a node the graph lacks
- InvalidState: operation against a completed context
- InvalidExit: exit index out of range for the current node
- StaleContext: lost an optimistic-concurrency race, refetch and retry
"""

__all__ = [
    "FlowError",
    "NotFound",
    "EmptyFlowError",
    "CompileError",
    "DanglingReference",
    "InvalidState",
    "InvalidExit",
    "StaleContext",
]


class FlowError(Exception):
    """Base class for engine errors.

    Subclasses override is_retryable() to tell retry loops whether the
    same call can succeed after a refetch.
    """

    def is_retryable(self) -> bool:
        """Returns True if the operation may succeed when retried."""
        return False


class NotFound(FlowError):
    """No flow matches the identifier, or it has no live revision."""

    def __init__(self, message: str, identifier: object = None):
        super().__init__(message)
        self.identifier = identifier

    def is_retryable(self) -> bool:
        # A revision may be published between attempts.
        return True


class EmptyFlowError(NotFound):
    """The compiled flow has no nodes, so no context can be created."""

    def __init__(self, flow_id: object):
        super().__init__(
            f"An empty flow cannot have a context or be executed: flow_id={flow_id}",
            identifier=flow_id,
        )

    def is_retryable(self) -> bool:
        return False


class CompileError(FlowError):
    """The canonical document is malformed or self-inconsistent."""

    def __init__(self, message: str, flow_id: object = None):
        super().__init__(message)
        self.flow_id = flow_id

    def __repr__(self) -> str:
        return f"CompileError(flow_id={self.flow_id!r}, message={str(self)!r})"


class DanglingReference(FlowError):
    """A transition resolved to a node UUID missing from the node index."""

    def __init__(self, context_id: str | None, node_uuid: str | None):
        super().__init__(
            f"Node {node_uuid!r} not found in flow graph for context {context_id!r}"
        )
        self.context_id = context_id
        self.node_uuid = node_uuid


class InvalidState(FlowError):
    """The operation is not allowed in the context's current state."""

    def __init__(self, message: str, context_id: str | None = None):
        super().__init__(message)
        self.context_id = context_id


class InvalidExit(FlowError, ValueError):
    """The chosen exit does not exist on the current node."""

    def __init__(self, node_uuid: str, exit_index: int, exit_count: int):
        super().__init__(
            f"Node {node_uuid!r} has {exit_count} exit(s), cannot take exit {exit_index}"
        )
        self.node_uuid = node_uuid
        self.exit_index = exit_index
        self.exit_count = exit_count


class StaleContext(FlowError):
    """The context changed in the store since it was read."""

    def __init__(self, context_id: str, expected_version: int | None, actual_version: int | None):
        super().__init__(
            f"Context {context_id!r} is stale: expected version "
            f"{expected_version}, store has {actual_version}"
        )
        self.context_id = context_id
        self.expected_version = expected_version
        self.actual_version = actual_version

    def is_retryable(self) -> bool:
        return True
