"""Exception hierarchy for the content-generation client."""


class NotebookLMError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(NotebookLMError):
    """A backend or store is missing a credential or endpoint."""


class BackendNotConfiguredError(ConfigurationError):
    """The cloud backend was called without an API key."""


class NoBackendAvailableError(ConfigurationError):
    """No backend can serve a request under the current mode."""

    MESSAGES = {
        "local": (
            "Local MCP server is not available. "
            "Start it with: notebooklm-mcp --transport http --port 3456"
        ),
        "cloud": "Gemini API is not configured. Set GEMINI_API_KEY",
        "auto": (
            "No backend available. Start the local MCP server "
            "or configure a Gemini API key"
        ),
    }

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(self.MESSAGES.get(mode, self.MESSAGES["auto"]))


class MCPError(NotebookLMError):
    """Protocol-level failure talking to the local MCP server."""


class MCPSessionError(MCPError):
    """The MCP handshake did not yield a session id."""


class MCPServerError(MCPError):
    """The MCP server answered with an HTTP or JSON-RPC error."""


class QueueItemNotFoundError(NotebookLMError):
    """No queue row has the requested id."""
