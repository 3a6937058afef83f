from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .contracts import ChatMessage, CompletionRequest


class MessageBody(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class CompletionRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = None
    messages: list[MessageBody] = Field(min_length=1)
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, alias="maxTokens")
    web_search: bool = Field(default=False, alias="webSearch")
    exclude_providers: list[str] = Field(default_factory=list, alias="excludeProviders")

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("maxTokens must be > 0.")
        return v

    @field_validator("messages")
    @classmethod
    def _validate_has_user_message(cls, v: list[MessageBody]) -> list[MessageBody]:
        if not any(m.role == "user" and m.content for m in v):
            raise ValueError("At least one non-empty user message is required.")
        return v

    def to_request(self) -> CompletionRequest:
        return CompletionRequest.build(
            [ChatMessage(role=m.role, content=m.content) for m in self.messages],
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            web_search=self.web_search,
        )


class ValidateRequestBody(BaseModel):
    result: dict[str, Any]


class ToolCallBody(BaseModel):
    arguments: dict[str, Any] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    message: str
    type: str = "api_error"
    code: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def make_error_response(*, message: str, type: str = "api_error", code: str | None = None) -> dict[str, Any]:
    return ErrorResponse(error=ErrorDetail(message=message, type=type, code=code)).model_dump()
