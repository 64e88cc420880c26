"""
导出与快速核对模块。
负责将方案的档位核算结果导出为 CSV 报表 (带 BOM，便于 Excel 直接打开)，
或导出为格式化的 Excel 文件，并生成简要的方案核对报告。
"""
import logging
import re
from datetime import date
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl import load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from giftplan.models import GiftSet, ProductRecord
from giftplan.pricing.engine import ProductLookup, TierBreakdown, calculate_gift_set

logger = logging.getLogger(__name__)

BOM = "\ufeff"

# 14 个档位汇总列 + 5 个产品详情列，位置固定
SUMMARY_COLUMNS = [
    "方案名称", "档位营收价", "选品折率", "数量", "非折扣零售总额", "整体折扣率",
    "折后展示总价", "全采购成本", "单套杂费", "预估税额", "单套全成本", "单套净利",
    "净利率", "全案总投入",
]
PRODUCT_COLUMNS = ["产品名称", "SKU", "零售单价", "折后单价", "采购单价"]
EXPORT_COLUMNS = SUMMARY_COLUMNS + PRODUCT_COLUMNS


def export_gift_set_csv(gift_set: GiftSet, lookup: ProductLookup) -> str:
    """
    生成方案报表 CSV 文本。
    每个档位的第一行带汇总数据，其余产品行用 14 个空列对齐。
    """
    lines = [",".join(EXPORT_COLUMNS)]
    for row in build_export_rows(gift_set, lookup):
        lines.append(",".join(row))
    return BOM + "\n".join(lines) + "\n"


def build_export_rows(
    gift_set: GiftSet,
    lookup: ProductLookup,
    quote_names: bool = True
) -> List[List[str]]:
    """按导出列顺序生成所有数据行 (字符串)。没有有效选品的档位不输出。"""
    rows = []
    for tier, breakdown in calculate_gift_set(gift_set, lookup):
        for idx, item in enumerate(breakdown.line_items):
            if idx == 0:
                prefix = _summary_values(gift_set.name, tier.discount_rate, tier.quantity, breakdown)
            else:
                prefix = [""] * len(SUMMARY_COLUMNS)
            rows.append(prefix + _product_values(item.product, item.discounted_unit_price, quote_names))
    return rows


def export_filename(gift_set: GiftSet, today: Optional[date] = None, ext: str = "csv") -> str:
    """生成报表文件名：方案报表_<方案名>_<日期>.csv"""
    today = today or date.today()
    safe_name = re.sub(r'[\\/:*?"<>|]', "_", gift_set.name.strip()) or "未命名方案"
    return f"方案报表_{safe_name}_{today.strftime('%Y-%m-%d')}.{ext}"


def generate_csv_bytes(
    gift_set: GiftSet,
    lookup: ProductLookup,
    today: Optional[date] = None
) -> Tuple[bytes, str]:
    """
    生成 CSV 文件字节流和建议文件名，用于下载。
    """
    content = export_gift_set_csv(gift_set, lookup)
    file_name = export_filename(gift_set, today)
    logger.info("导出方案报表 %s (%d 个档位)", file_name, len(gift_set.tiers))
    return content.encode("utf-8"), file_name


def generate_excel_bytes(
    gift_set: GiftSet,
    lookup: ProductLookup,
    today: Optional[date] = None
) -> Tuple[BytesIO, str]:
    """
    生成 Excel 文件的内存流和建议文件名。
    列和行与 CSV 报表完全一致。
    """
    output = BytesIO()
    df = pd.DataFrame(build_export_rows(gift_set, lookup, quote_names=False), columns=EXPORT_COLUMNS)
    df.to_excel(output, index=False, sheet_name="方案报表")
    output.seek(0)

    _format_excel(output)
    output.seek(0)
    return output, export_filename(gift_set, today, ext="xlsx")


def quick_check(results: List[Tuple[Any, TierBreakdown]]) -> Dict[str, int]:
    """
    生成方案快速核对报告，统计关键指标。
    """
    return {
        "档位数": len(results),
        "空档位数": sum(1 for _, b in results if not b.line_items),
        "亏损档位数": sum(1 for _, b in results if b.line_items and b.is_loss),
        "选品总行数": sum(len(b.line_items) for _, b in results),
    }


# ==========================================
# 内部辅助函数
# ==========================================

def format_plain(value: Any) -> str:
    """按输入原样展示数值：整数不带小数点 (500 而不是 500.0)。"""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def format_money(value: float) -> str:
    # 加 0.0 把 -0.0 规整为 0.0
    return f"{value + 0.0:.2f}"


def format_percent(value: float) -> str:
    return f"{format_money(value)}%"


def _summary_values(set_name: str, discount_rate: float, quantity: float, b: TierBreakdown) -> List[str]:
    return [
        set_name,
        format_plain(b.revenue_per_unit),
        f"{format_plain(discount_rate)}%",
        format_plain(quantity),
        format_money(b.total_retail),
        format_percent(b.overall_discount_rate),
        format_money(b.product_presentation_value),
        format_money(b.total_platform_purchase_cost),
        format_money(b.other_costs),
        format_money(b.tax_amount),
        format_money(b.total_unit_cost),
        format_money(b.net_profit),
        format_percent(b.margin_percentage),
        format_money(b.total_project_investment),
    ]


def _product_values(product: ProductRecord, discounted_unit_price: float, quote_name: bool) -> List[str]:
    # CSV 中产品名称一律加引号，不做内部引号转义 (与导入解析规则一致)
    return [
        f'"{product.name}"' if quote_name else product.name,
        product.sku,
        format_plain(product.retail_price),
        format_money(discounted_unit_price),
        format_plain(product.platform_price),
    ]


def _format_excel(target: BytesIO):
    """对 Excel 文件进行美化格式化。"""
    wb = load_workbook(target)
    ws = wb.active

    header_fill = PatternFill(start_color="1B4332", end_color="1B4332", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=11)
    border = Border(
        left=Side(style='thin'), right=Side(style='thin'),
        top=Side(style='thin'), bottom=Side(style='thin')
    )
    center_align = Alignment(horizontal="center", vertical="center", wrap_text=True)
    left_align = Alignment(horizontal="left", vertical="center", wrap_text=True)

    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = center_align
        cell.border = border

    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for cell in row:
            cell.border = border
            cell.alignment = left_align

    # 自动调整列宽 (中文按两个字符宽度估算)
    for column in ws.columns:
        column_letter = column[0].column_letter
        max_length = 0
        for cell in column:
            text = "" if cell.value is None else str(cell.value)
            width = sum(2 if ord(ch) > 127 else 1 for ch in text)
            max_length = max(max_length, width)
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    ws.freeze_panes = "A2"
    target.seek(0)
    target.truncate()
    wb.save(target)
