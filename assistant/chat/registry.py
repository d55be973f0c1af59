from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from assistant.chat.tools import ToolDefinition
from assistant.errors import ToolRegistryError
from assistant.providers.tool_provider import ToolProvider

logger = logging.getLogger(__name__)

_Snapshot = Tuple[Tuple[ToolDefinition, ...], Dict[str, ToolDefinition]]
_EMPTY: _Snapshot = ((), {})


class ToolRegistry:
    """
    Current set of invocable tools.

    The catalog lives in one immutable snapshot. `refresh()` builds a complete
    replacement before assigning it, so readers see either the old catalog or
    the new one, never a mix.
    """

    def __init__(self, provider: ToolProvider) -> None:
        self._provider = provider
        self._snapshot: _Snapshot = _EMPTY

    async def refresh(self) -> List[ToolDefinition]:
        """
        Reload the catalog from the provider.

        On any failure the catalog is cleared and ToolRegistryError is raised;
        stale definitions are never served.
        """
        try:
            fetched = await self._provider.list_tools()
            tools: List[ToolDefinition] = []
            by_name: Dict[str, ToolDefinition] = {}
            for t in fetched:
                if not isinstance(t, ToolDefinition) or not t.name:
                    raise ValueError(f"invalid tool definition: {t!r}")
                if t.name in by_name:
                    logger.warning(f"Duplicate tool name from provider ignored: {t.name}")
                    continue
                by_name[t.name] = t
                tools.append(t)
        except Exception as e:
            self._snapshot = _EMPTY
            logger.error(f"Tool registry refresh failed; catalog cleared: {type(e).__name__}: {e}")
            raise ToolRegistryError(f"tool catalog unavailable: {e}") from e

        self._snapshot = (tuple(tools), by_name)
        logger.info(f"Tool registry loaded {len(tools)} tool(s): {', '.join(t.name for t in tools)}")
        return list(tools)

    def list(self) -> List[ToolDefinition]:
        tools, _ = self._snapshot
        return list(tools)

    def get(self, name: str) -> Optional[ToolDefinition]:
        _, by_name = self._snapshot
        return by_name.get(name)

    def openai_tools(self) -> List[dict]:
        return [t.to_openai_tool() for t in self.list()]
