"""
数据模型定义模块。
定义了项目中使用的核心数据结构：ProductRecord、Tier 和 GiftSet。
持久化时沿用原有存储的 camelCase 字段名。
"""
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Dict, Any


def new_id() -> str:
    """生成一个不重复的记录 ID。"""
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


def coerce_number(value: Any) -> float:
    """
    将任意输入转换为有限数值。
    无法解析、空值、NaN/Infinity 一律视为 0，不阻断保存。
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if not math.isfinite(number):
        return 0.0
    # 整数保持为 int，方便按用户输入原样展示 (500 而不是 500.0)
    if number.is_integer():
        return int(number)
    return number


@dataclass
class ProductRecord:
    """
    产品库中的一条选品。
    价格字段均为非负数，默认 0；image 可能为空或无效链接。
    """
    id: str = field(default_factory=new_id)
    sku: str = ""
    name: str = ""
    spec: str = ""
    unit: str = ""
    platform_price: float = 0.0    # 平台价/采购价，成本核算依据
    channel_price: float = 0.0     # 渠道价，仅保留字段，不参与核算
    retail_price: float = 0.0      # 市场零售价
    image: str = ""
    manufacturer: str = ""
    category: str = ""

    @property
    def has_image(self) -> bool:
        url = (self.image or "").strip()
        return url.startswith("http://") or url.startswith("https://")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "spec": self.spec,
            "unit": self.unit,
            "platformPrice": self.platform_price,
            "channelPrice": self.channel_price,
            "retailPrice": self.retail_price,
            "image": self.image,
            "manufacturer": self.manufacturer,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductRecord":
        return cls(
            id=str(data.get("id") or new_id()),
            sku=str(data.get("sku") or ""),
            name=str(data.get("name") or ""),
            spec=str(data.get("spec") or ""),
            unit=str(data.get("unit") or ""),
            platform_price=coerce_number(data.get("platformPrice")),
            channel_price=coerce_number(data.get("channelPrice")),
            retail_price=coerce_number(data.get("retailPrice")),
            image=str(data.get("image") or ""),
            manufacturer=str(data.get("manufacturer") or ""),
            category=str(data.get("category") or ""),
        )


@dataclass
class Tier:
    """
    礼盒方案中的一个价格档位。
    selected_product_ids 保存选品 ID 的有序列表，允许重复。
    """
    id: str = field(default_factory=new_id)
    label: str = ""
    target_tier_price: float = 0.0   # 档位营收价 (单套)
    discount_rate: float = 0.0       # 选品折率 (%)，仅用于展示价和税基
    quantity: float = 0              # 计划套数
    box_cost: float = 0.0            # 包材单价
    labor_cost: float = 0.0          # 人工单价
    logistics_cost: float = 0.0      # 物流单价
    tax_rate: float = 0.0            # 税率 (%)
    selected_product_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "targetTierPrice": self.target_tier_price,
            "discountRate": self.discount_rate,
            "quantity": self.quantity,
            "boxCost": self.box_cost,
            "laborCost": self.labor_cost,
            "logisticsCost": self.logistics_cost,
            "taxRate": self.tax_rate,
            "selectedProductIds": list(self.selected_product_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tier":
        return cls(
            id=str(data.get("id") or new_id()),
            label=str(data.get("label") or ""),
            target_tier_price=coerce_number(data.get("targetTierPrice")),
            discount_rate=coerce_number(data.get("discountRate")),
            quantity=coerce_number(data.get("quantity")),
            box_cost=coerce_number(data.get("boxCost")),
            labor_cost=coerce_number(data.get("laborCost")),
            logistics_cost=coerce_number(data.get("logisticsCost")),
            tax_rate=coerce_number(data.get("taxRate")),
            selected_product_ids=[str(pid) for pid in data.get("selectedProductIds") or []],
        )


@dataclass
class GiftSet:
    """
    一个礼赠设计方案，独占其下的所有档位。
    """
    name: str
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ms)   # 毫秒时间戳
    tiers: List[Tier] = field(default_factory=list)

    def find_tier(self, tier_id: str):
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "tiers": [t.to_dict() for t in self.tiers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GiftSet":
        return cls(
            id=str(data.get("id") or new_id()),
            name=str(data.get("name") or ""),
            created_at=int(coerce_number(data.get("createdAt"))),
            tiers=[Tier.from_dict(t) for t in data.get("tiers") or []],
        )
