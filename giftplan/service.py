"""
业务服务层，遵循单一职责原则拆分为独立服务。
所有修改都采用"复制并替换整个集合"的方式，然后整体写回存储。
"""
import asyncio
import dataclasses
import logging
import random
from datetime import date
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Tuple

from giftplan import config
from giftplan.errors import NotFoundError
from giftplan.exporter import generate_csv_bytes, generate_excel_bytes, quick_check
from giftplan.importer import parse_file_to_products
from giftplan.models import GiftSet, ProductRecord, Tier, coerce_number, new_id
from giftplan.pricing.engine import (
    ProductLookup,
    TierBreakdown,
    calculate_gift_set,
    evaluate_tier,
    lookup_from_products,
)
from giftplan.recommender import RecommendationOutcome, configure_model, recommend
from giftplan.storage import CollectionStore

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("sku", "name", "spec", "unit", "image", "manufacturer", "category")
NUMERIC_FIELDS = ("platform_price", "channel_price", "retail_price")

SORT_OPTIONS = ("default", "price-asc", "price-desc")


def tier_form(tier: Tier) -> Dict[str, str]:
    """把档位参数还原为表单字符串，用于编辑时回填。"""
    return {
        "target_price": str(tier.target_tier_price),
        "discount": str(tier.discount_rate),
        "quantity": str(tier.quantity),
        "box": str(tier.box_cost),
        "labor": str(tier.labor_cost),
        "logistics": str(tier.logistics_cost),
        "tax": str(tier.tax_rate),
    }


class ImportService:
    """
    导入服务：专门负责将外部文件解析为内部模型。
    纯内存操作，不修改产品库。
    """
    def parse_file(self, file_content: bytes, filename: str = "") -> List[ProductRecord]:
        """从 CSV / Excel 字节流解析选品，失败时抛出 FormatError / DecodeError。"""
        return parse_file_to_products(file_content, filename)


class ProductLibraryService:
    """
    产品库服务：负责选品的增删改查和导入。
    """
    def __init__(self, store: CollectionStore[ProductRecord], import_service: Optional[ImportService] = None):
        self.store = store
        self.import_service = import_service or ImportService()
        self.products: List[ProductRecord] = store.load()

    def lookup(self) -> ProductLookup:
        return lookup_from_products(self.products)

    def get(self, product_id: str) -> ProductRecord:
        for p in self.products:
            if p.id == product_id:
                return p
        raise NotFoundError(f"选品不存在: {product_id}")

    def _commit(self, products: List[ProductRecord]):
        self.products = products
        self.store.save(products)

    def import_file(self, file_content: bytes, filename: str = "") -> int:
        """
        导入文件中的选品，新记录排在最前面。
        解析失败时直接抛出异常，产品库保持不变。
        """
        imported = self.import_service.parse_file(file_content, filename)
        self._commit(imported + self.products)
        logger.info("已导入 %d 条选品 (%s)", len(imported), filename or "上传文件")
        return len(imported)

    def add_blank_product(self) -> ProductRecord:
        """新增一条待完善的选品，放在最前面。"""
        product = ProductRecord(
            sku=f"NEW-{random.randint(0, 999)}",
            name="待完善新选品",
            unit="件",
            category="默认",
        )
        self._commit([product] + self.products)
        return product

    def update_product(self, product_id: str, **changes: Any) -> ProductRecord:
        """按字段修改选品，数值字段按输入强制转换，不做校验拦截。"""
        current = self.get(product_id)
        values = {}
        for key, value in changes.items():
            if key in NUMERIC_FIELDS:
                values[key] = coerce_number(value)
            elif key in TEXT_FIELDS:
                values[key] = "" if value is None else str(value)
            else:
                raise ValueError(f"不支持修改的字段: {key}")

        updated = dataclasses.replace(current, **values)
        self._commit([updated if p.id == product_id else p for p in self.products])
        return updated

    def delete_product(self, product_id: str) -> None:
        """删除选品；档位中对它的引用保留，核算时自动忽略。"""
        self.get(product_id)
        self._commit([p for p in self.products if p.id != product_id])

    def categories(self) -> List[str]:
        seen = []
        for p in self.products:
            if p.category and p.category not in seen:
                seen.append(p.category)
        return [config.ALL_CATEGORIES] + seen

    def search(
        self,
        term: str = "",
        category: str = config.ALL_CATEGORIES,
        sort_by: str = "default"
    ) -> List[ProductRecord]:
        """按品名/SKU 模糊搜索，支持分类筛选和零售价排序。"""
        term = (term or "").lower()
        result = [
            p for p in self.products
            if (term in (p.name or "").lower() or term in (p.sku or "").lower())
            and (category == config.ALL_CATEGORIES or p.category == category)
        ]
        if sort_by == "price-asc":
            result.sort(key=lambda p: p.retail_price)
        elif sort_by == "price-desc":
            result.sort(key=lambda p: p.retail_price, reverse=True)
        return result


class GiftSetService:
    """
    方案服务：负责方案、档位和档位选品的维护。
    """
    def __init__(self, store: CollectionStore[GiftSet]):
        self.store = store
        self.gift_sets: List[GiftSet] = store.load()

    def _commit(self, gift_sets: List[GiftSet]):
        self.gift_sets = gift_sets
        self.store.save(gift_sets)

    def get_set(self, set_id: str) -> GiftSet:
        for s in self.gift_sets:
            if s.id == set_id:
                return s
        raise NotFoundError(f"方案不存在: {set_id}")

    def get_tier(self, set_id: str, tier_id: str) -> Tier:
        tier = self.get_set(set_id).find_tier(tier_id)
        if tier is None:
            raise NotFoundError(f"档位不存在: {tier_id}")
        return tier

    def create_set(self, name: str) -> Optional[GiftSet]:
        """新建方案，名称为空时不做任何操作。"""
        if not name or not name.strip():
            return None
        gift_set = GiftSet(name=name)
        self._commit([gift_set] + self.gift_sets)
        return gift_set

    def delete_set(self, set_id: str) -> None:
        self.get_set(set_id)
        self._commit([s for s in self.gift_sets if s.id != set_id])

    def save_tier(self, set_id: str, form: Dict[str, Any], tier_id: Optional[str] = None) -> Tier:
        """
        新建或修改档位参数。
        form 的键与 config.DEFAULT_TIER_FORM 一致；缺失的键新建时使用默认值，
        修改时沿用档位当前值。修改时保留已选产品。
        """
        if tier_id:
            values = tier_form(self.get_tier(set_id, tier_id))
        else:
            values = dict(config.DEFAULT_TIER_FORM)
        values.update({k: v for k, v in form.items() if v is not None})
        params = {
            "label": f"{str(values['target_price']).strip()}元档",
            "target_tier_price": coerce_number(values["target_price"]),
            "discount_rate": coerce_number(values["discount"]),
            "quantity": coerce_number(values["quantity"]),
            "box_cost": coerce_number(values["box"]),
            "labor_cost": coerce_number(values["labor"]),
            "logistics_cost": coerce_number(values["logistics"]),
            "tax_rate": coerce_number(values["tax"]),
        }

        if tier_id:
            return self._update_tier(set_id, tier_id, lambda t: dataclasses.replace(t, **params))

        gift_set = self.get_set(set_id)
        tier = Tier(id=new_id(), selected_product_ids=[], **params)
        self._replace_set(dataclasses.replace(gift_set, tiers=gift_set.tiers + [tier]))
        return tier

    def delete_tier(self, set_id: str, tier_id: str) -> None:
        gift_set = self.get_set(set_id)
        self.get_tier(set_id, tier_id)
        tiers = [t for t in gift_set.tiers if t.id != tier_id]
        self._replace_set(dataclasses.replace(gift_set, tiers=tiers))

    def add_products(self, set_id: str, tier_id: str, product_ids: List[str]) -> Tier:
        """把选品追加到档位末尾，允许重复添加。"""
        return self._update_tier(
            set_id, tier_id,
            lambda t: dataclasses.replace(t, selected_product_ids=t.selected_product_ids + list(product_ids)),
        )

    def add_product(self, set_id: str, tier_id: str, product_id: str) -> Tier:
        return self.add_products(set_id, tier_id, [product_id])

    def remove_product_at(self, set_id: str, tier_id: str, index: int) -> Tier:
        """按位置移除档位中的一个选品。"""
        def _remove(t: Tier) -> Tier:
            if not 0 <= index < len(t.selected_product_ids):
                raise IndexError(f"选品位置超出范围: {index}")
            ids = list(t.selected_product_ids)
            del ids[index]
            return dataclasses.replace(t, selected_product_ids=ids)
        return self._update_tier(set_id, tier_id, _remove)

    def apply_recommendations(
        self,
        set_id: str,
        tier_id: str,
        outcome: RecommendationOutcome,
        top_n: int = config.AI_APPLY_TOP_N
    ) -> Tier:
        """一键采纳前 N 个推荐。"""
        return self.add_products(set_id, tier_id, outcome.top_ids(top_n))

    def _update_tier(self, set_id: str, tier_id: str, fn: Callable[[Tier], Tier]) -> Tier:
        gift_set = self.get_set(set_id)
        self.get_tier(set_id, tier_id)
        updated_tier = None
        tiers = []
        for t in gift_set.tiers:
            if t.id == tier_id:
                updated_tier = fn(t)
                tiers.append(updated_tier)
            else:
                tiers.append(t)
        self._replace_set(dataclasses.replace(gift_set, tiers=tiers))
        return updated_tier

    def _replace_set(self, gift_set: GiftSet):
        self._commit([gift_set if s.id == gift_set.id else s for s in self.gift_sets])


class CalculationService:
    """
    计算服务：专门负责档位核算。
    纯内存操作，不修改任何数据。
    """
    def calculate_tier(self, tier: Tier, lookup: ProductLookup) -> TierBreakdown:
        return evaluate_tier(tier, lookup)

    def calculate_set(self, gift_set: GiftSet, lookup: ProductLookup) -> List[Tuple[Tier, TierBreakdown]]:
        return calculate_gift_set(gift_set, lookup)

    def get_quick_report(self, results: List[Tuple[Tier, TierBreakdown]]) -> Dict[str, int]:
        """生成简单的核对报告"""
        return quick_check(results)


class ExportService:
    """
    导出服务：专门负责将方案报表导出为文件或字节流。
    """
    def get_csv_bytes(self, gift_set: GiftSet, lookup: ProductLookup, today: Optional[date] = None) -> Tuple[bytes, str]:
        return generate_csv_bytes(gift_set, lookup, today)

    def get_excel_bytes(self, gift_set: GiftSet, lookup: ProductLookup, today: Optional[date] = None) -> Tuple[BytesIO, str]:
        return generate_excel_bytes(gift_set, lookup, today)

    def export_to_file(self, gift_set: GiftSet, lookup: ProductLookup, path: str = "", excel: bool = False) -> str:
        """导出到本地文件，path 为空时使用建议文件名。"""
        if excel:
            stream, file_name = self.get_excel_bytes(gift_set, lookup)
            data = stream.getvalue()
        else:
            data, file_name = self.get_csv_bytes(gift_set, lookup)
        path = path or file_name
        with open(path, "wb") as f:
            f.write(data)
        return path


class RecommendationService:
    """
    AI 选品服务：封装模型配置和异步调用。
    """
    def __init__(self, model=None):
        self._model = model

    @property
    def model(self):
        if self._model is None:
            self._model = configure_model()
        return self._model

    async def recommend_async(self, products: List[ProductRecord], tier: Tier, requirement: str = "") -> RecommendationOutcome:
        return await recommend(self.model, products, tier, requirement)

    def recommend(self, products: List[ProductRecord], tier: Tier, requirement: str = "") -> RecommendationOutcome:
        """同步入口，供 CLI 和 Streamlit 使用。"""
        return asyncio.run(self.recommend_async(products, tier, requirement))
