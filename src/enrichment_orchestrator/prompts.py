from __future__ import annotations

import json
from typing import Any

REPAIR_SYSTEM_PROMPT = (
    "You complete a single missing field of a product analysis. "
    "Answer with valid JSON only, no prose and no Markdown."
)

FIELD_PROMPTS: dict[str, str] = {
    "seo.title": (
        'Write an SEO title of 60-70 characters for "{name}". Put the main keyword first. '
        'JSON format: {{"title": "..."}}'
    ),
    "seo.meta_description": (
        'Write a persuasive meta description of 150-160 characters for "{name}" ending with a call to action. '
        'JSON format: {{"meta_description": "..."}}'
    ),
    "description_long": (
        'Write a 600-1000 word marketing description for "{name}" in four paragraphs: hook, technical '
        "features, user benefits, differentiation from competitors. "
        'JSON format: {{"description_long": "..."}}'
    ),
    "pricing.competitive_analysis": (
        'Analyse the price positioning of "{name}" against its competitors using prices from 5-10 retailers. '
        'JSON format: {{"competitive_analysis": "...", "competitor_prices": [...]}}'
    ),
    "competition.main_competitors": (
        'Identify 3-5 direct competitors of "{name}" with model, price and key difference. '
        'JSON format: {{"main_competitors": [{{"name": "...", "product": "...", "price": "...", '
        '"main_difference": "..."}}]}}'
    ),
    "hs_code.code": (
        'Find the 8-digit Harmonized System code for "{name}" in category "{category}". '
        'JSON format: {{"code": "12345678", "description": "..."}}'
    ),
    "customer_reviews.sentiment_score": (
        'Estimate the average customer sentiment for "{name}" on a 0-5 scale from public reviews. '
        'JSON format: {{"sentiment_score": 4.2}}'
    ),
    "customer_reviews.common_praises": (
        'List the praises that recur in customer reviews of "{name}". '
        'JSON format: {{"common_praises": ["..."]}}'
    ),
    "image_optimization.suggested_angles": (
        'Recommend at least 3 camera angles for product photos of "{name}", each with lighting and '
        'composition notes. JSON format: {{"suggested_angles": ["..."]}}'
    ),
    "web_sources": (
        'List the URLs used to analyse "{name}" with the kind of information found on each; at least 5 '
        'reliable sources. JSON format: ["https://... - information type"]'
    ),
}

GENERIC_FIELD_PROMPT = (
    'Fill in the field "{field}" for the product "{name}". Existing data: {existing}. '
    'Return ONLY valid JSON of the form {{"{leaf}": ...}}.'
)


def product_name(product: dict[str, Any]) -> str:
    return str(product.get("product_name") or product.get("name") or product.get("productName") or "the product")


def field_prompt(field: str, product: dict[str, Any], existing: Any = None) -> str:
    name = product_name(product)
    template = FIELD_PROMPTS.get(field)
    if template is not None:
        return template.format(name=name, category=product.get("category") or "unknown")
    return GENERIC_FIELD_PROMPT.format(
        field=field,
        name=name,
        existing=json.dumps(existing, ensure_ascii=False, default=str),
        leaf=field.rsplit(".", 1)[-1],
    )
