"""Error taxonomy shared by the chat runtime, the analysis pipeline and the HTTP layer.

Only request validation and upstream outages are raised. Tool failures, chunk
failures and synthesis failures are carried as data (see `ToolResult`,
`ChunkAnalysisResult`, `AggregatedReport`).
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for errors raised by the assistant core."""


class InvalidRequestError(AssistantError, ValueError):
    """Missing or malformed caller input, rejected before any I/O."""


class UpstreamUnavailable(AssistantError):
    """A collaborator (session store, tool provider) could not be reached. Retryable."""


class SessionStoreUnavailable(UpstreamUnavailable):
    pass


class ToolProviderUnavailable(UpstreamUnavailable):
    pass


class ToolExecutionFailed(AssistantError):
    """The tool provider reached the tool but the tool reported an error."""


class ToolRegistryError(AssistantError):
    """Tool catalog could not be loaded. Fatal at startup."""
