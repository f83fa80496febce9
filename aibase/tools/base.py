"""Tool base class and argument validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft202012Validator

from aibase.config.paths import TenantId


@dataclass
class ToolContext:
    """Who a tool is running for."""
    project_id: str
    tenant_id: TenantId = "default"
    conv_id: str = "default"
    user_id: Optional[Union[int, str]] = None


def validate_json_schema(schema: Dict[str, Any], payload: Dict[str, Any]) -> List[str]:
    """Validate ``payload`` against a JSON schema and return readable errors."""
    errors = sorted(Draft202012Validator(schema).iter_errors(payload), key=lambda e: list(e.path))
    return [f"{'/'.join(str(p) for p in e.path) or '$'}: {e.message}" for e in errors]


class Tool:
    """Function-calling tool.

    Subclasses set ``name``, ``description`` and a JSON-schema
    ``parameters`` object, and implement ``execute``.
    """

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}}

    def __init__(self, context: ToolContext):
        self.context = context

    def validate(self, args: Dict[str, Any]) -> List[str]:
        return validate_json_schema(self.parameters, args)

    def definition(self) -> Dict[str, Any]:
        """OpenAI-style function definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def execute(self, args: Dict[str, Any]) -> Any:
        raise NotImplementedError
