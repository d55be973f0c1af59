from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ToolDefinition:
    """One invocable tool as advertised by a tool provider."""

    name: str
    description: str = ""
    parameter_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai_tool(self) -> Dict[str, Any]:
        """Function-tool shape accepted by LangChain `bind_tools`."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema or {"type": "object", "properties": {}},
            },
        }

    def to_catalog_entry(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameterSchema": self.parameter_schema}


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    result: Any = None
    error: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def failure(cls, error: str, details: Optional[str] = None) -> "ToolResult":
        return cls(ok=False, error=error, details=details)

    def to_payload(self) -> Any:
        if self.ok:
            return self.result
        err = {"error": self.error or "tool_error", "details": self.details}
        if isinstance(self.result, dict):
            return {**self.result, **err}
        return err

    def to_content(self, *, max_chars: int = 60_000) -> str:
        """Serialize for a `tool` message; oversized results are truncated, not dropped."""
        payload = self.to_payload()
        if isinstance(payload, str):
            s = payload
        else:
            try:
                s = json.dumps(payload, ensure_ascii=False, default=str)
            except Exception:
                s = str(payload)
        if len(s) > max_chars:
            return json.dumps({"truncated": True, "preview": s[:max_chars]}, ensure_ascii=False)
        return s
