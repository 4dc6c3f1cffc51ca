"""Tool dispatcher: the only path from a proposed call to a tool.

lookup -> inspector pipeline -> tool.execute. A refusal (inspector) is logged
apart from a failure (the tool ran and failed) so operators can tell "we
refused to try" from "we tried and failed".
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from dockerizer.core.cancellation import CancellationToken
from dockerizer.core.errors import InspectorRejectedError, ToolError
from dockerizer.core.inspectors import InspectorPipeline
from dockerizer.core.models import FileSet, ToolCall
from dockerizer.core.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry, pipeline: InspectorPipeline):
        self.registry = registry
        self.pipeline = pipeline

    def execute(
        self,
        tool_name: str,
        arguments: Mapping[str, Any] | None,
        token: CancellationToken,
    ) -> str:
        """Run one tool call through the inspectors and, if approved, the tool.

        Raises:
            UnknownToolError: tool_name is not registered.
            InspectorRejectedError: an inspector refused; the tool was not run.
            ToolError: any other sandbox, validation or execution failure.
            RunCancelledError: the token fired before the side effect started.
        """
        call = ToolCall(tool_name=tool_name, arguments=dict(arguments or {}))
        tool = self.registry.lookup(call.tool_name)

        try:
            self.pipeline.inspect_all(call.tool_name, call.arguments)
        except InspectorRejectedError as e:
            logger.warning(f"Refused {call.tool_name}: {e.inspector} inspector: {e.reason}")
            raise

        token.raise_if_cancelled()
        logger.debug(f"Executing {call.tool_name}")
        try:
            return tool.execute(call.arguments, token)
        except ToolError as e:
            logger.info(f"Tool {call.tool_name} failed: {e}")
            raise

    def write_files(self, file_set: FileSet, token: CancellationToken) -> list[str]:
        """Write every non-empty FileSet entry via file_write. Stops at the first failure."""
        written = []
        for filename, content in file_set.files():
            self.execute("file_write", {"path": filename, "content": content}, token)
            written.append(filename)
        return written
