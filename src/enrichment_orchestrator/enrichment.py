from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from .cache import CacheGateway, make_cache_key
from .contracts import CompletionRequest, CompletionResult, ErrorKind, Failure, Success
from .dispatcher import ProviderDispatcher
from .json_extract import parse_json_content
from .metrics import validation_completeness
from .repair import RepairLoop
from .validation import CompletenessSchema, ValidationResult, validate

log = structlog.get_logger()


class _DispatchFailed(Exception):
    def __init__(self, failure: Failure):
        super().__init__(failure.message)
        self.failure = failure


@dataclass(frozen=True)
class EnrichmentOutcome:
    completion: CompletionResult
    result: dict[str, Any] | None = None
    validation: ValidationResult | None = None
    cached: bool = False

    @property
    def success(self) -> bool:
        return isinstance(self.completion, Success) and self.result is not None


class EnrichmentOrchestrator:
    """
    Dispatch -> parse -> validate -> repair missing fields -> re-validate.

    The returned result always carries `_incomplete`, `_missing_fields` and a
    `_validation` snapshot so callers can persist partial results honestly.
    """

    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        repair_loop: RepairLoop,
        *,
        cache: CacheGateway | None = None,
        cache_ttl_minutes: float = 0,
    ):
        self.dispatcher = dispatcher
        self.repair_loop = repair_loop
        self.cache = cache
        self.cache_ttl_minutes = cache_ttl_minutes

    async def _complete(self, request: CompletionRequest, exclude: tuple[str, ...]) -> tuple[CompletionResult, bool]:
        if self.cache is None or self.cache_ttl_minutes <= 0:
            return await self.dispatcher.dispatch(request, exclude=exclude), False

        async def _compute() -> dict[str, Any]:
            result = await self.dispatcher.dispatch(request, exclude=exclude)
            if isinstance(result, Failure):
                raise _DispatchFailed(result)
            return result.to_dict()

        key = make_cache_key("completion", {"request": request.cache_payload(), "exclude": sorted(exclude)})
        try:
            lookup = await self.cache.get_or_compute(key, self.cache_ttl_minutes, _compute)
        except _DispatchFailed as e:
            return e.failure, False
        return Success(content=lookup.value["content"], provider_id=lookup.value["provider"]), lookup.hit

    async def enrich(
        self,
        request: CompletionRequest,
        schema: CompletenessSchema,
        *,
        product: dict[str, Any] | None = None,
        exclude: Iterable[str] = (),
    ) -> EnrichmentOutcome:
        completion, cached = await self._complete(request, tuple(exclude))
        if isinstance(completion, Failure):
            return EnrichmentOutcome(completion=completion)

        try:
            parsed = parse_json_content(completion.content)
        except ValueError as e:
            parsed = None
            log.warning("enrichment_unparseable", provider=completion.provider_id, error=str(e))
        if not isinstance(parsed, dict):
            failure = Failure(
                f"{completion.provider_id} returned content without a JSON object",
                ErrorKind.UNKNOWN,
                (completion.provider_id,),
            )
            return EnrichmentOutcome(completion=failure, cached=cached)

        initial = validate(parsed, schema)
        validation_completeness.labels(kind=schema.kind).observe(initial.completeness_score)
        log.info(
            "enrichment_validated",
            kind=schema.kind,
            score=initial.completeness_score,
            missing=len(initial.missing_fields),
            incomplete=len(initial.incomplete_fields),
        )

        if initial.missing_fields:
            result = await self.repair_loop.repair(parsed, initial.missing_fields, product=product)
        else:
            result = copy.deepcopy(parsed)
            result["_incomplete"] = False
            result["_missing_fields"] = []

        final = validate(result, schema) if initial.missing_fields else initial
        result["_validation"] = final.to_dict()
        return EnrichmentOutcome(completion=completion, result=result, validation=final, cached=cached)
