import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import asyncio
import json

import pytest

from giftplan.errors import RecommendationParseError
from giftplan.models import ProductRecord, Tier
from giftplan.recommender import (
    FAILURE_MESSAGE,
    RESPONSE_SCHEMA,
    build_candidates,
    build_prompt,
    parse_recommendations,
    recommend,
)


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """模拟 GenerativeModel，记录收到的 prompt。"""

    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []
        self.configs = []

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        self.configs.append(generation_config)
        if self.error:
            raise self.error
        return FakeResponse(self.text)


def make_products(n=3):
    return [
        ProductRecord(id=f"p{i}", name=f"产品{i}", retail_price=100 + i, category="茶具")
        for i in range(n)
    ]


def payload(*items):
    return json.dumps({"recommendations": [
        {"productId": pid, "reason": "合适", "confidence": c} for pid, c in items
    ]})


TIER = Tier(target_tier_price=500, discount_rate=80)


def test_results_sorted_and_unknown_ids_dropped():
    model = FakeModel(payload(("p1", 70), ("ghost", 99), ("p0", 95), ("p2", 80)))
    outcome = asyncio.run(recommend(model, make_products(), TIER))

    assert outcome.ok
    assert [r.productId for r in outcome.recommendations] == ["p0", "p2", "p1"]
    assert outcome.top_ids(2) == ["p0", "p2"]


def test_malformed_json_gives_error_outcome():
    outcome = asyncio.run(recommend(FakeModel("不是 JSON"), make_products(), TIER))
    assert not outcome.ok
    assert outcome.error == FAILURE_MESSAGE
    assert outcome.recommendations == []


def test_transport_error_gives_error_outcome():
    model = FakeModel(error=RuntimeError("network down"))
    outcome = asyncio.run(recommend(model, make_products(), TIER))
    assert outcome.error == FAILURE_MESSAGE


def test_empty_library_skips_model_call():
    model = FakeModel(payload(("p0", 90)))
    outcome = asyncio.run(recommend(model, [], TIER))
    assert outcome.ok
    assert outcome.recommendations == []
    assert model.prompts == []


def test_prompt_contains_budget_and_default_requirement():
    model = FakeModel(payload())
    asyncio.run(recommend(model, make_products(), TIER, "  "))
    prompt = model.prompts[0]
    assert "500" in prompt
    assert "80%" in prompt
    assert "寻找高性价比、美观的礼品组合" in prompt
    assert '"p0"' in prompt


def test_only_first_150_products_are_candidates():
    products = make_products(200)
    candidates = build_candidates(products)
    assert len(candidates) == 150
    assert candidates[-1]["id"] == "p149"
    assert set(candidates[0]) == {"id", "name", "retailPrice", "category"}

    # 超出候选范围的 ID 视为未知
    model = FakeModel(payload(("p199", 99), ("p10", 60)))
    outcome = asyncio.run(recommend(model, products, TIER))
    assert [r.productId for r in outcome.recommendations] == ["p10"]


def test_invalid_items_are_dropped():
    text = json.dumps({"recommendations": [
        {"productId": "p0", "reason": "ok", "confidence": 120},
        {"reason": "缺少 ID", "confidence": 50},
        {"productId": "p1", "reason": "ok", "confidence": 60},
    ]})
    items = parse_recommendations(text, ["p0", "p1"])
    assert [r.productId for r in items] == ["p1"]


def test_wrong_top_level_shape_raises():
    with pytest.raises(RecommendationParseError):
        parse_recommendations('{"recommendations": "none"}', ["p0"])
    with pytest.raises(RecommendationParseError):
        parse_recommendations("[1, 2]", ["p0"])


def test_concurrent_requests_are_independent():
    products = make_products()

    async def run_both():
        return await asyncio.gather(
            recommend(FakeModel(payload(("p0", 90))), products, TIER),
            recommend(FakeModel(payload(("p2", 90))), products, Tier(target_tier_price=300)),
        )

    first, second = asyncio.run(run_both())
    assert first.top_ids() == ["p0"]
    assert second.top_ids() == ["p2"]


def test_build_prompt_uses_given_requirement():
    prompt = build_prompt([], 800, 75, "送给高端客户")
    assert "送给高端客户" in prompt
    assert "800" in prompt


def test_request_carries_response_schema():
    model = FakeModel(payload(("p0", 90)))
    asyncio.run(recommend(model, make_products(), TIER))
    sent = model.configs[0]
    assert sent["response_mime_type"] == "application/json"
    assert sent["response_schema"] is RESPONSE_SCHEMA
    item_schema = RESPONSE_SCHEMA["properties"]["recommendations"]["items"]
    assert set(item_schema["required"]) == {"productId", "reason", "confidence"}


def test_item_without_reason_is_dropped():
    text = json.dumps({"recommendations": [
        {"productId": "p0", "confidence": 90},
        {"productId": "p1", "reason": "ok", "confidence": 60},
    ]})
    assert [r.productId for r in parse_recommendations(text, ["p0", "p1"])] == ["p1"]
