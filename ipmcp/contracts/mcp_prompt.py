from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel


class McpPromptArgument(BaseModel):
    name: str
    description: Optional[str] = None
    required: Optional[bool] = None


class McpPrompt(BaseModel):
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    arguments: Optional[List[McpPromptArgument]] = None


class McpPromptMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: Dict[str, Any]

    @classmethod
    def user_text(cls, text: str) -> "McpPromptMessage":
        return cls(role="user", content={"type": "text", "text": text})
