"""
AI 选品推荐模块。
把候选产品、档位预算和客户需求交给 Gemini，解析返回的推荐列表。
调用失败或返回格式异常时降级为空列表，不影响核算流程。
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import google.generativeai as genai
from pydantic import BaseModel, Field, ValidationError

from giftplan import config
from giftplan.errors import RecommendationParseError
from giftplan.models import ProductRecord, Tier

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "AI 选品解析失败，请检查 API 配置。"


class RecommendationItem(BaseModel):
    productId: str
    reason: str
    confidence: int = Field(ge=0, le=100)


class _RecommendationPayload(BaseModel):
    recommendations: List[Any] = Field(default_factory=list)


# 约束模型输出结构，三个字段都必填
RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "recommendations": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "productId": {"type": "STRING"},
                    "reason": {"type": "STRING"},
                    "confidence": {"type": "INTEGER"},
                },
                "required": ["productId", "reason", "confidence"],
            },
        },
    },
    "required": ["recommendations"],
}


@dataclass
class RecommendationOutcome:
    """一次推荐请求的结果：成功时 error 为 None。"""
    recommendations: List[RecommendationItem] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def top_ids(self, n: int = config.AI_APPLY_TOP_N) -> List[str]:
        return [r.productId for r in self.recommendations[:n]]


def configure_model(api_key: str = config.AI_API_KEY, model_name: str = config.AI_MODEL):
    """配置 Gemini 并返回模型实例。"""
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(model_name=model_name)


def build_candidates(
    products: Iterable[ProductRecord],
    limit: int = config.AI_CANDIDATE_LIMIT
) -> List[Dict[str, Any]]:
    """截取前 limit 个产品，只保留模型需要的字段。"""
    candidates = []
    for p in products:
        if len(candidates) >= limit:
            break
        candidates.append({
            "id": p.id,
            "name": p.name,
            "retailPrice": p.retail_price,
            "category": p.category,
        })
    return candidates


def build_prompt(
    candidates: List[Dict[str, Any]],
    target_budget: float,
    discount_rate: float,
    requirement: str = ""
) -> str:
    requirement = requirement.strip() or config.AI_DEFAULT_REQUIREMENT
    return f"""你是一个数字化礼赠选品专家。当前产品库有：{json.dumps(candidates, ensure_ascii=False)}。
目标档位预算：{target_budget} 元。
产品折扣率：{discount_rate}%。
客户特定需求："{requirement}"。

请基于以上产品推荐 {config.AI_RECOMMEND_COUNT} 个最匹配的单品，并根据其适配程度给出匹配度分值。
必须严格返回以下 JSON 格式：
{{
  "recommendations": [
    {{
      "productId": "必须是产品库中的真实ID",
      "reason": "推荐理由（20字以内）",
      "confidence": 0-100之间的整数（表示匹配度）
    }}
  ]
}}"""


def parse_recommendations(text: str, known_ids: Iterable[str]) -> List[RecommendationItem]:
    """
    解析模型返回的 JSON 文本。
    整体结构不对时抛出 RecommendationParseError；
    单条格式错误或引用了未知产品 ID 的推荐直接丢弃。
    结果按匹配度从高到低排序。
    """
    try:
        payload = _RecommendationPayload.model_validate(json.loads(text or "{}"))
    except (json.JSONDecodeError, ValidationError) as e:
        raise RecommendationParseError(f"推荐结果格式错误: {e}") from e

    known = set(known_ids)
    items = []
    for raw in payload.recommendations:
        try:
            item = RecommendationItem.model_validate(raw)
        except ValidationError:
            logger.warning("丢弃格式错误的推荐项: %r", raw)
            continue
        if item.productId not in known:
            logger.warning("丢弃引用未知产品的推荐: %s", item.productId)
            continue
        items.append(item)

    items.sort(key=lambda r: r.confidence, reverse=True)
    return items


async def recommend(
    model,
    products: List[ProductRecord],
    tier: Tier,
    requirement: str = ""
) -> RecommendationOutcome:
    """
    请求 AI 推荐。不会抛出异常，失败时返回带 error 的空结果。
    每次调用只使用局部状态，不同档位可并发调用。
    """
    if not products:
        return RecommendationOutcome()

    candidates = build_candidates(products)
    prompt = build_prompt(candidates, tier.target_tier_price, tier.discount_rate, requirement)

    try:
        response = await model.generate_content_async(
            prompt,
            generation_config={
                "response_mime_type": "application/json",
                "response_schema": RESPONSE_SCHEMA,
            },
        )
        items = parse_recommendations(response.text, (c["id"] for c in candidates))
    except RecommendationParseError as e:
        logger.warning("AI 推荐解析失败: %s", e)
        return RecommendationOutcome(error=FAILURE_MESSAGE)
    except Exception as e:
        logger.exception("AI 推荐请求失败: %s", e)
        return RecommendationOutcome(error=FAILURE_MESSAGE)

    logger.info("AI 推荐返回 %d 条有效结果", len(items))
    return RecommendationOutcome(recommendations=items)
