import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from io import BytesIO

import pandas as pd
import pytest

from giftplan.errors import DecodeError, FormatError
from giftplan.importer import (
    decode_rows,
    decode_text,
    import_products,
    parse_file_to_products,
    parse_line,
    read_table,
    resolve_headers,
    sanitize_number,
)


# --- 表格解析 ---

def test_quoted_field_keeps_comma():
    assert parse_line('A,"B,C",D') == ["A", "B,C", "D"]


def test_fields_are_trimmed():
    assert parse_line("  a , b ,c  ") == ["a", "b", "c"]


def test_trailing_comma_gives_empty_field():
    assert parse_line("a,b,") == ["a", "b", ""]


def test_escaped_quotes_are_not_supported():
    # 已知限制：引号内的 "" 只是两次切换引号状态
    assert parse_line('"say ""hi""",x') == ["say hi", "x"]


def test_decode_utf8_and_crlf():
    content = "产品名称,零售价\r\n茶具,599\r\n\r\n  \n茶叶,199\n".encode("utf-8")
    assert decode_rows(content) == [["产品名称", "零售价"], ["茶具", "599"], ["茶叶", "199"]]


def test_decode_strips_bom():
    content = "\ufeff产品名称,零售价\n茶具,599".encode("utf-8")
    assert decode_rows(content)[0] == ["产品名称", "零售价"]


def test_decode_falls_back_to_gbk():
    content = "产品名称,零售价\n青山远黛,599\n".encode("gbk")
    rows = decode_rows(content)
    assert rows[1] == ["青山远黛", "599"]


def test_fallback_never_raises_on_garbage():
    text = decode_text(b"\xff\xfe\xfa\x80 abc")
    assert "abc" in text


def test_header_only_is_format_error():
    with pytest.raises(FormatError):
        decode_rows("产品名称,零售价\n\n   \n".encode("utf-8"))


def test_empty_file_is_format_error():
    with pytest.raises(FormatError):
        decode_rows(b"")


# --- 表头识别 ---

def test_resolve_round_trip_headers():
    mapping = resolve_headers(["SKU编码", "产品名称", "零售价"])
    assert mapping["sku"] == 0
    assert mapping["name"] == 1
    assert mapping["retailPrice"] == 2
    others = {k: v for k, v in mapping.items() if k not in ("sku", "name", "retailPrice")}
    assert all(v is None for v in others.values())


def test_exact_match_beats_earlier_substring_match():
    # 第 0 列只是包含 "名称"，第 1 列完全匹配 "品名"
    mapping = resolve_headers(["厂商名称", "品名"])
    assert mapping["name"] == 1
    assert mapping["manufacturer"] == 0


def test_substring_match_and_case_insensitive():
    mapping = resolve_headers(["商品sku号", "市场零售价(元)", "Sku"])
    assert mapping["sku"] == 2
    assert mapping["retailPrice"] == 1


def test_substring_first_column_wins():
    mapping = resolve_headers(["采购价格A", "采购价格B"])
    assert mapping["platformPrice"] == 0


def test_custom_synonym_table():
    mapping = resolve_headers(["Title", "Cost"], {"name": ["title"], "platformPrice": ["cost"]})
    assert mapping == {"name": 0, "platformPrice": 1}


# --- 数值清洗 ---

@pytest.mark.parametrize("raw, expected", [
    ("¥1,299.50", 1299.5),
    ("599元", 599),
    ("", 0),
    ("abc", 0),
    ("1.2.3", 1.2),
    (".5", 0.5),
    ("-30", 30),
    ("１２３", 0),
    ("12３", 12),
    (None, 0),
])
def test_sanitize_number(raw, expected):
    assert sanitize_number(raw) == pytest.approx(expected)


# --- 导入 ---

def test_import_maps_fields_and_defaults():
    rows = [
        ["SKU编码", "产品名称", "采购价", "零售价", "规格"],
        ["ZS-1", "禅意茶具", "150", "¥599", "一壶四杯"],
    ]
    products = import_products(rows)
    assert len(products) == 1
    p = products[0]
    assert p.sku == "ZS-1"
    assert p.name == "禅意茶具"
    assert p.platform_price == 150
    assert p.retail_price == 599
    assert p.spec == "一壶四杯"
    assert p.category == "默认"
    assert p.unit == ""
    assert p.channel_price == 0


def test_import_default_sku_and_name():
    rows = [["零售价"], ["100"], ["200"]]
    products = import_products(rows)
    assert [p.sku for p in products] == ["SKU-0", "SKU-1"]
    assert all(p.name == "未命名" for p in products)


def test_import_short_row_reads_empty_cells():
    rows = [["产品名称", "零售价", "分类"], ["茶具"]]
    p = import_products(rows)[0]
    assert p.retail_price == 0
    assert p.category == ""


def test_import_generates_unique_ids():
    rows = [["产品名称"], ["a"], ["b"], ["c"]]
    ids = [p.id for p in import_products(rows)]
    assert len(set(ids)) == 3


def test_parse_csv_file_end_to_end():
    content = 'SKU编码,产品名称,零售价,电商分类\nA-1,"茶具,礼盒装",599,茶具\n'.encode("gbk")
    products = parse_file_to_products(content, "库.csv")
    assert products[0].name == "茶具,礼盒装"
    assert products[0].category == "茶具"


def test_read_excel_table():
    buffer = BytesIO()
    pd.DataFrame({"产品名称": ["茶具", None], "零售价": [599, 199]}).to_excel(buffer, index=False)
    rows = read_table(buffer.getvalue(), "产品库.xlsx")
    assert rows[0] == ["产品名称", "零售价"]
    assert rows[1][0] == "茶具"
    assert rows[2][0] == ""

    products = import_products(rows)
    assert products[0].retail_price == 599


def test_legacy_xls_is_rejected():
    with pytest.raises(DecodeError):
        read_table(b"\xd0\xcf\x11\xe0", "产品库.xls")
