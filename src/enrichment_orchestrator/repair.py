from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from .contracts import CompletionRequest, Failure
from .dispatcher import ProviderDispatcher
from .json_extract import parse_json_content
from .metrics import repair_fields_total
from .paths import FieldPath, deep_merge
from .prompts import REPAIR_SYSTEM_PROMPT, field_prompt

log = structlog.get_logger()


class _Unrecovered:
    pass


UNRECOVERED = _Unrecovered()


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def extract_field_value(path: FieldPath, parsed: Any, *, accepts_object: bool = False) -> Any:
    """
    Pick the value for `path` out of a single-field answer.

    Accepts the full nested shape, `{leaf: value}`, or the bare value itself.
    A bare object is only taken as the value when the field holds an object.
    """
    if isinstance(parsed, dict):
        nested = path.resolve(parsed)
        if not _is_empty(nested):
            return nested
        if path.leaf in parsed:
            value = parsed[path.leaf]
            return UNRECOVERED if _is_empty(value) else value
        if path.segments[0] in parsed or not accepts_object:
            return UNRECOVERED
    return UNRECOVERED if _is_empty(parsed) else parsed


class RepairLoop:
    """
    Re-query only the missing fields of a result, one dispatch per field, in order.

    Each recovered value is deep-merged at its path; fields that cannot be
    recovered stay listed in `_missing_fields`.
    """

    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        *,
        excluded_providers: Iterable[str] = (),
        model: str | None = None,
        temperature: float | None = 0.3,
        clock: Callable[[], datetime] | None = None,
    ):
        self.dispatcher = dispatcher
        self.excluded_providers = tuple(excluded_providers)
        self.model = model
        self.temperature = temperature
        self._now: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))

    def _request_for(self, path: FieldPath, product: dict[str, Any], working: dict[str, Any]) -> CompletionRequest:
        parent = FieldPath(path.segments[:-1]).resolve(working) if len(path.segments) > 1 else None
        return CompletionRequest.from_prompt(
            field_prompt(str(path), product, parent),
            system=REPAIR_SYSTEM_PROMPT,
            model=self.model,
            temperature=self.temperature,
        )

    async def _recover(self, path: FieldPath, product: dict[str, Any], working: dict[str, Any]) -> Any:
        result = await self.dispatcher.dispatch(
            self._request_for(path, product, working), exclude=self.excluded_providers
        )
        if isinstance(result, Failure):
            log.warning("repair_field_failed", field=str(path), reason=result.error_kind.value, error=result.message)
            return UNRECOVERED

        try:
            parsed = parse_json_content(result.content)
        except ValueError as e:
            log.warning("repair_field_failed", field=str(path), reason="unparseable", error=str(e))
            return UNRECOVERED

        value = extract_field_value(path, parsed, accepts_object=isinstance(path.resolve(working), dict))
        if value is UNRECOVERED:
            log.warning("repair_field_failed", field=str(path), reason="no_value", provider=result.provider_id)
        return value

    async def repair(
        self,
        result: dict[str, Any],
        missing_fields: Iterable[str | FieldPath],
        *,
        product: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        fields = [FieldPath.parse(f) for f in missing_fields]
        if not fields:
            unchanged = copy.deepcopy(result)
            unchanged["_incomplete"] = False
            return unchanged

        working = copy.deepcopy(result)
        context = product if product is not None else working
        processed: list[str] = []
        failed: list[str] = []

        for path in fields:
            value = await self._recover(path, context, working)
            if value is UNRECOVERED:
                failed.append(str(path))
                repair_fields_total.labels(outcome="failed").inc()
                continue
            working = deep_merge(working, path.as_patch(value))
            processed.append(str(path))
            repair_fields_total.labels(outcome="recovered").inc()
            log.info("repair_field_recovered", field=str(path))

        working["_incomplete"] = bool(failed)
        working["_missing_fields"] = failed
        working["_retry_summary"] = {
            "processed_fields": processed,
            "failed_fields": failed,
            "retried_at": self._now().isoformat(),
        }
        log.info("repair_finished", processed=len(processed), failed=len(failed))
        return working
