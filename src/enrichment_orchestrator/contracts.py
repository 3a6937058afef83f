from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ErrorKind(str, Enum):
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    RATE_LIMITED = "RATE_LIMIT"
    PROVIDER_DOWN = "PROVIDER_DOWN"
    AUTH_ERROR = "AUTH_ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def falls_back(self) -> bool:
        return self in _FALLBACK_KINDS


_FALLBACK_KINDS = frozenset({ErrorKind.PAYMENT_REQUIRED, ErrorKind.RATE_LIMITED, ErrorKind.PROVIDER_DOWN})


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[ChatMessage, ...]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    web_search: bool = False

    @classmethod
    def build(
        cls,
        messages: list[dict[str, str]] | list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        web_search: bool = False,
    ) -> "CompletionRequest":
        msgs = tuple(
            m if isinstance(m, ChatMessage) else ChatMessage(role=m["role"], content=m.get("content", ""))
            for m in messages
        )
        return cls(messages=msgs, model=model, temperature=temperature, max_tokens=max_tokens, web_search=web_search)

    @classmethod
    def from_prompt(cls, prompt: str, *, system: str | None = None, **kwargs: Any) -> "CompletionRequest":
        messages: list[ChatMessage] = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        return cls.build(messages, **kwargs)

    def messages_payload(self) -> list[dict[str, str]]:
        return [m.to_dict() for m in self.messages]

    def cache_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.messages_payload(),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "web_search": self.web_search,
        }


@dataclass(frozen=True)
class Success:
    content: str
    provider_id: str

    success = True

    def __post_init__(self) -> None:
        if not self.content:
            raise ValueError("Success requires non-empty content.")

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "content": self.content, "provider": self.provider_id}


@dataclass(frozen=True)
class Failure:
    message: str
    error_kind: ErrorKind
    attempted: tuple[str, ...] = field(default=())

    success = False

    def __post_init__(self) -> None:
        if not isinstance(self.error_kind, ErrorKind):
            raise ValueError("Failure requires an ErrorKind.")

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "errorCode": self.error_kind.value}


CompletionResult = Union[Success, Failure]
