"""
档位核算引擎模块。
根据档位参数和已选产品计算单套成本、税额、净利和全案投入。
纯函数，相同输入总是得到相同结果。
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Any

from giftplan.models import GiftSet, ProductRecord, Tier

ProductLookup = Callable[[str], Optional[ProductRecord]]


@dataclass
class LineItem:
    """档位中的一行选品，折后单价仅用于展示，不计入成本。"""
    product: ProductRecord
    discounted_unit_price: float


@dataclass
class TierBreakdown:
    """单个档位的完整核算结果。"""
    revenue_per_unit: float = 0.0             # 档位营收价
    total_retail: float = 0.0                 # 非折扣零售总额
    discount_rate_decimal: float = 0.0
    overall_discount_rate: float = 0.0        # 整体折扣率 (%)，仅展示
    product_presentation_value: float = 0.0   # 折后展示总价，仅作为税基
    total_platform_purchase_cost: float = 0.0 # 全采购成本
    other_costs: float = 0.0                  # 单套杂费
    tax_amount: float = 0.0                   # 预估税额
    total_unit_cost: float = 0.0              # 单套全成本
    net_profit: float = 0.0                   # 单套净利，可为负
    margin_percentage: float = 0.0            # 净利率 (%)
    total_project_investment: float = 0.0     # 全案总投入
    line_items: List[LineItem] = field(default_factory=list)

    @property
    def is_loss(self) -> bool:
        return self.net_profit < 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revenuePerUnit": self.revenue_per_unit,
            "totalRetail": self.total_retail,
            "discountRateDecimal": self.discount_rate_decimal,
            "overallDiscountRate": self.overall_discount_rate,
            "productPresentationValue": self.product_presentation_value,
            "totalPlatformPurchaseCost": self.total_platform_purchase_cost,
            "otherCosts": self.other_costs,
            "taxAmount": self.tax_amount,
            "totalUnitCost": self.total_unit_cost,
            "netProfit": self.net_profit,
            "marginPercentage": self.margin_percentage,
            "totalProjectInvestment": self.total_project_investment,
            "lineItems": [
                {
                    "productId": item.product.id,
                    "name": item.product.name,
                    "sku": item.product.sku,
                    "retailPrice": item.product.retail_price,
                    "discountedUnitPrice": item.discounted_unit_price,
                    "platformPrice": item.product.platform_price,
                }
                for item in self.line_items
            ],
        }


def lookup_from_products(products: Iterable[ProductRecord]) -> ProductLookup:
    """用产品列表构建按 ID 查找的函数。"""
    index = {p.id: p for p in products}
    return index.get


def resolve_products(product_ids: Iterable[str], lookup: ProductLookup) -> List[ProductRecord]:
    """
    按顺序解析选品 ID，保留重复项。
    已从产品库删除的 ID 直接跳过，不报错。
    """
    resolved = []
    for pid in product_ids:
        product = lookup(pid)
        if product is not None:
            resolved.append(product)
    return resolved


def compute_tier_breakdown(tier: Tier, products: List[ProductRecord]) -> TierBreakdown:
    """
    计算档位核算结果。

    规则:
    - 产品成本始终按全额采购价 (platform_price) 计算，折率不影响成本。
    - 折后展示总价只作为税基。
    - 除零时相关比率返回 0。
    """
    revenue_per_unit = tier.target_tier_price
    total_retail = sum(p.retail_price for p in products)
    discount_rate_decimal = tier.discount_rate / 100
    overall_discount_rate = (revenue_per_unit / total_retail) * 100 if total_retail > 0 else 0

    product_presentation_value = total_retail * discount_rate_decimal
    total_platform_purchase_cost = sum(p.platform_price for p in products)

    other_costs = tier.box_cost + tier.labor_cost + tier.logistics_cost
    tax_amount = (product_presentation_value + other_costs) * (tier.tax_rate / 100)

    total_unit_cost = total_platform_purchase_cost + other_costs + tax_amount
    net_profit = revenue_per_unit - total_unit_cost
    margin_percentage = (net_profit / revenue_per_unit) * 100 if revenue_per_unit > 0 else 0
    total_project_investment = total_unit_cost * tier.quantity

    line_items = [
        LineItem(product=p, discounted_unit_price=p.retail_price * discount_rate_decimal)
        for p in products
    ]

    return TierBreakdown(
        revenue_per_unit=revenue_per_unit,
        total_retail=total_retail,
        discount_rate_decimal=discount_rate_decimal,
        overall_discount_rate=overall_discount_rate,
        product_presentation_value=product_presentation_value,
        total_platform_purchase_cost=total_platform_purchase_cost,
        other_costs=other_costs,
        tax_amount=tax_amount,
        total_unit_cost=total_unit_cost,
        net_profit=net_profit,
        margin_percentage=margin_percentage,
        total_project_investment=total_project_investment,
        line_items=line_items,
    )


def evaluate_tier(tier: Tier, lookup: ProductLookup) -> TierBreakdown:
    """解析档位选品并计算。"""
    return compute_tier_breakdown(tier, resolve_products(tier.selected_product_ids, lookup))


def calculate_gift_set(
    gift_set: GiftSet,
    lookup: ProductLookup
) -> List[Tuple[Tier, TierBreakdown]]:
    """
    批量计算方案下所有档位。
    返回 (档位, 核算结果) 列表，顺序与方案中档位顺序一致。
    """
    return [(tier, evaluate_tier(tier, lookup)) for tier in gift_set.tiers]
