"""
数据导入模块。
负责解析上传的 CSV / Excel 文件，将其转换为内部的 ProductRecord 模型。
支持编码自动识别 (UTF-8 / GBK)、智能列名识别和数值清洗。
"""
import logging
import os
import re
from io import BytesIO
from typing import List, Dict, Any, Optional

import pandas as pd

from giftplan.errors import DecodeError, FormatError
from giftplan.models import ProductRecord

logger = logging.getLogger(__name__)

# 列名映射字典 (目标字段 -> 可能的表头列表)，顺序即匹配优先级
HEADER_SYNONYMS: Dict[str, List[str]] = {
    "sku": ["SKU编码", "sku", "编号", "SKU"],
    "name": ["产品名称", "品名", "名称", "选品名称"],
    "spec": ["规格", "尺寸", "参数"],
    "unit": ["单位", "量词"],
    "platformPrice": ["平台价", "采购价", "成本", "采购单价"],
    "channelPrice": ["渠道价", "分销价", "结算价"],
    "retailPrice": ["零售价", "市场价", "市场零售价"],
    "image": ["素材CDN", "图片", "链接", "图片URL"],
    "manufacturer": ["厂商名称", "厂家", "品牌"],
    "category": ["电商分类", "分类", "类目"],
}

NUMERIC_FIELDS = ("platformPrice", "channelPrice", "retailPrice")

# 未匹配到列时的默认值
FIELD_DEFAULTS: Dict[str, Any] = {
    "name": "未命名",
    "category": "默认",
    "spec": "",
    "unit": "",
    "image": "",
    "manufacturer": "",
    "platformPrice": 0,
    "channelPrice": 0,
    "retailPrice": 0,
}

FALLBACK_ENCODING = "gb18030"

_LINE_SPLIT = re.compile(r"\r?\n")
_NON_NUMERIC = re.compile(r"[^0-9.]")
_DECIMAL_PREFIX = re.compile(r"^[0-9]*\.?[0-9]+|^[0-9]+\.?")


def decode_text(content: bytes) -> str:
    """
    先按 UTF-8 严格解码，失败后回退到 GBK 系编码。
    回退解码总能成功 (非法字节替换为占位符)。
    """
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        logger.info("UTF-8 解码失败，回退到 %s", FALLBACK_ENCODING)
        try:
            text = content.decode(FALLBACK_ENCODING, errors="replace")
        except LookupError as e:
            raise DecodeError(f"无法解析文件编码: {e}") from e
    # 去掉 Excel 另存为 CSV 时带的 BOM
    if text.startswith("\ufeff"):
        text = text[1:]
    return text


def parse_line(line: str) -> List[str]:
    """
    按逗号切分一行，双引号内的逗号不作为分隔符。
    注意：不支持引号内的转义引号 ("")，与导出格式保持一致。
    """
    result = []
    current = ""
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            result.append(current.strip())
            current = ""
        else:
            current += char
    result.append(current.strip())
    return result


def decode_rows(content: bytes) -> List[List[str]]:
    """
    解析 CSV 字节流为行列表，每行是字段字符串列表。
    至少需要表头 + 1 行数据，否则抛出 FormatError。
    """
    text = decode_text(content)
    lines = [line for line in _LINE_SPLIT.split(text) if line.strip() != ""]
    if len(lines) < 2:
        raise FormatError("表格格式不正确：至少需要表头和一行数据")
    return [parse_line(line) for line in lines]


def decode_excel_rows(content: bytes) -> List[List[str]]:
    """读取 Excel 第一个工作表，按与 CSV 相同的行结构返回。"""
    try:
        df = pd.read_excel(BytesIO(content), header=None, dtype=str)
    except Exception as e:
        raise DecodeError(f"无法读取 Excel 文件: {e}") from e

    df = df.fillna("")
    rows = []
    for values in df.itertuples(index=False):
        row = [str(v).strip() for v in values]
        if any(row):
            rows.append(row)

    if len(rows) < 2:
        raise FormatError("表格格式不正确：至少需要表头和一行数据")
    return rows


def read_table(content: bytes, filename: str = "") -> List[List[str]]:
    """根据文件扩展名选择 Excel 或 CSV 解析。"""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext == ".xls":
        # 旧版 xls 需要 xlrd，不在依赖中
        raise DecodeError("不支持 .xls 文件，请另存为 xlsx 或 CSV 后导入")
    if ext in (".xlsx", ".xlsm"):
        return decode_excel_rows(content)
    return decode_rows(content)


def resolve_headers(
    header_row: List[str],
    synonym_table: Optional[Dict[str, List[str]]] = None
) -> Dict[str, Optional[int]]:
    """
    将表头映射到标准字段。
    先做忽略大小写的完全匹配，再做包含匹配；均从左到右取第一列。
    未匹配到的字段映射为 None。
    """
    if synonym_table is None:
        synonym_table = HEADER_SYNONYMS

    headers_lower = [str(h).strip().lower() for h in header_row]
    mapping: Dict[str, Optional[int]] = {}

    for key, candidates in synonym_table.items():
        cands_lower = [c.lower() for c in candidates]
        mapping[key] = _find_column(headers_lower, cands_lower)

    return mapping


def _find_column(headers_lower: List[str], cands_lower: List[str]) -> Optional[int]:
    for idx, header in enumerate(headers_lower):
        if header in cands_lower:
            return idx
    for idx, header in enumerate(headers_lower):
        if any(cand in header for cand in cands_lower):
            return idx
    return None


def sanitize_number(value: Any) -> float:
    """
    清洗数值：去掉数字和小数点以外的所有字符后解析。
    多个小数点时取最长的合法前缀 ("1.2.3" -> 1.2)；无法解析返回 0。
    """
    if value is None:
        return 0
    cleaned = _NON_NUMERIC.sub("", str(value))
    match = _DECIMAL_PREFIX.match(cleaned)
    if not match:
        return 0
    number = float(match.group(0))
    return int(number) if number.is_integer() else number


def import_products(rows: List[List[str]]) -> List[ProductRecord]:
    """
    将解析好的行 (第一行为表头) 转换为 ProductRecord 列表。
    每条记录都会生成新的唯一 ID。
    """
    if len(rows) < 2:
        raise FormatError("表格格式不正确：至少需要表头和一行数据")

    mapping = resolve_headers(rows[0])
    missing = [k for k, v in mapping.items() if v is None]
    if missing:
        logger.info("以下字段未匹配到列，将使用默认值: %s", ", ".join(missing))

    products = []
    for i, cols in enumerate(rows[1:]):
        values: Dict[str, Any] = {}
        for key, col_idx in mapping.items():
            if col_idx is None:
                values[key] = f"SKU-{i}" if key == "sku" else FIELD_DEFAULTS[key]
                continue
            cell = cols[col_idx] if col_idx < len(cols) else ""
            values[key] = sanitize_number(cell) if key in NUMERIC_FIELDS else cell

        products.append(ProductRecord(
            sku=values["sku"],
            name=values["name"],
            spec=values["spec"],
            unit=values["unit"],
            platform_price=values["platformPrice"],
            channel_price=values["channelPrice"],
            retail_price=values["retailPrice"],
            image=values["image"],
            manufacturer=values["manufacturer"],
            category=values["category"],
        ))

    logger.info("解析得到 %d 条选品", len(products))
    return products


def parse_file_to_products(file_content: bytes, filename: str = "") -> List[ProductRecord]:
    """从上传文件的字节流直接得到选品列表。"""
    return import_products(read_table(file_content, filename))
