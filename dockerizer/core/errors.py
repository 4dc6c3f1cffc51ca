"""Exception hierarchy for the dockerizer agent.

Tool-level failures share ToolError so the agent loop can turn any of them
into attempt feedback. The subclasses keep "we refused to try" (sandbox,
validator, inspector) apart from "we tried and failed" (execution) for logging.
"""


class DockerizerError(Exception):
    """Base exception for all dockerizer errors."""

    pass


# --- Tool call errors ---


class ToolError(DockerizerError):
    """A tool call did not complete.

    Carries whatever partial output (captured stdout/stderr) was available.
    """

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class PathEscapeError(ToolError):
    """A path resolved outside the sandbox root."""

    pass


class DisallowedCommandError(ToolError):
    """A command line was rejected by the command validator."""

    pass


class InspectorRejectedError(ToolError):
    """An inspector refused a tool call before execution."""

    def __init__(self, inspector: str, reason: str):
        self.inspector = inspector
        self.reason = reason
        super().__init__(f"inspector {inspector} rejected tool call: {reason}")


class ToolExecutionError(ToolError):
    """The external program or collaborator itself failed."""

    pass


class UnknownToolError(ToolError):
    """Tool not registered with the dispatcher."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"unknown tool: {tool_name}")


class InvalidArgumentError(ToolError):
    """Tool arguments do not match the tool's declared shape."""

    pass


# --- Agent errors ---


class GenerationError(DockerizerError):
    """The AI collaborator failed to produce a file set."""

    pass


class RunCancelledError(DockerizerError):
    """The cancellation token fired before the step could run."""

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class DockerNotAvailableError(DockerizerError):
    """Docker is required but not available."""

    pass


# --- Config ---


class ConfigError(DockerizerError):
    """Configuration file or value is invalid."""

    pass
