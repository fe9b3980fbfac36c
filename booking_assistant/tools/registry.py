"""Tool definitions and the registry exposed to the extractor."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class ToolDefinition:
    """Schema for a callable tool.

    ``critical`` tools end the turn when they fail; every other tool is
    best-effort and its result is simply omitted.
    """

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    handler: Optional[Callable[..., Awaitable[Any]]] = None
    critical: bool = False
    timeout_seconds: Optional[float] = None


class ToolRegistry:
    """Registry of available tools."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        self._disabled: Set[str] = set()

    def register(self, tool: ToolDefinition) -> None:
        self._tools[tool.name] = tool
        logger.info("ToolRegistry: registered tool '%s'", tool.name)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def enable(self, name: str) -> None:
        self._disabled.discard(name)

    def disable(self, name: str) -> None:
        self._disabled.add(name)
        logger.info("ToolRegistry: disabled tool '%s'", name)

    def is_enabled(self, name: str) -> bool:
        return name in self._tools and name not in self._disabled

    @property
    def names(self) -> List[str]:
        """All registered tool names regardless of enabled state."""
        return list(self._tools.keys())

    def get_schema_for_llm(self) -> List[dict]:
        """OpenAI function-calling schema for enabled tools only."""
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters,
                },
            }
            for t in self._tools.values()
            if t.name not in self._disabled
        ]
