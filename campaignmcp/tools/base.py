"""Base class for MCP tools."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class Tool(ABC):
    """
    A named operation exposed through tools/list and tools/call.

    Subclasses declare a JSON schema (``parameters``) for the catalog and a
    pydantic ``args_model`` that coerces the loose argument map before
    ``run`` sees it. ``run`` returns any JSON-serialisable payload.
    """

    args_model: type[BaseModel] | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    def coerce(self, arguments: dict[str, Any]) -> Any:
        """Validate arguments into args_model. Raises pydantic.ValidationError."""
        if self.args_model is None:
            return arguments
        return self.args_model.model_validate(arguments)

    @abstractmethod
    async def run(self, args: Any) -> Any:
        ...

    def to_descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameters,
        }


def text_content(payload: Any) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return {"type": "text", "text": text}
