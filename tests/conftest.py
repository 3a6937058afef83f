import copy

import pytest

_COMPLETE_PRODUCT = {
    "product_name": "Acme Blender 3000",
    "brand": "Acme",
    "description": "A 1200 W countertop blender with a 2 L glass jug.",
    "description_long": " ".join(["Sturdy blender for smoothies, soups and crushed ice."] * 12),
    "seo": {
        "title": "Acme Blender 3000 - 1200 W Glass Jug Blender",
        "meta_description": (
            "Blend smoothies, soups and frozen drinks with the Acme Blender 3000: 1200 W motor, "
            "2 L glass jug and six speeds."
        ),
        "keywords": ["blender", "smoothie blender", "glass jug blender"],
        "score": 82,
    },
    "pricing": {
        "estimated_price": "129.99 EUR",
        "market_position": "mid-range",
        "competitive_analysis": "Priced 10% under the leading premium brands with a comparable motor.",
    },
    "competition": {
        "main_competitors": ["Vitamix E310", "Ninja BN750"],
        "differentiation": "Glass jug and a five-year motor warranty at a mid-range price point.",
    },
    "competitive_pros": ["Glass jug", "Quiet motor"],
    "competitive_cons": ["Heavy"],
    "use_cases": ["Smoothies", "Soups"],
    "market_position": "mid-range",
    "trends": {"market_trend": "growing", "popularity_score": 71},
    "repairability": {"score": 6.5, "ease_of_repair": "moderate"},
    "hs_code": {"code": "850940"},
    "environmental_impact": {"recyclability_score": 60, "eco_score": "B"},
    "image_optimization": {"suggested_angles": ["front", "side", "top"], "quality_score": 80},
    "tags_categories": {"primary_category": "Kitchen appliances", "suggested_tags": ["blender", "kitchen", "glass"]},
    "customer_reviews": {"sentiment_score": 0.8, "common_praises": ["Powerful"]},
    "global_report": {"overall_score": 78, "strengths": ["Build quality", "Price"], "priority_actions": ["Add video"]},
    "web_sources": ["https://a.example", "https://b.example", "https://c.example"],
}


@pytest.fixture
def complete_product():
    return copy.deepcopy(_COMPLETE_PRODUCT)


@pytest.fixture
def no_sleep():
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
