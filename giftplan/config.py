"""
全局配置与常量。
可通过环境变量覆盖数据目录、AI 模型和日志级别。
"""
import logging
import os

# 持久化
DATA_DIR = os.getenv("GIFTPLAN_DATA_DIR", os.path.join(os.getcwd(), "data"))
STORAGE_KEY_PRODUCTS = "SHANSHUI_DB_PRODUCTS_V25"
STORAGE_KEY_GIFTSETS = "SHANSHUI_DB_GIFTSETS_V25"

# AI 选品 (Gemini)
AI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")
AI_MODEL = os.getenv("GIFTPLAN_AI_MODEL", "gemini-2.0-flash")
AI_CANDIDATE_LIMIT = 150
AI_RECOMMEND_COUNT = 8
AI_APPLY_TOP_N = 3
AI_DEFAULT_REQUIREMENT = "寻找高性价比、美观的礼品组合"

# 新建档位时的默认参数 (与表单一致，均为字符串输入)
DEFAULT_TIER_FORM = {
    "target_price": "500",
    "discount": "80",
    "quantity": "100",
    "box": "25",
    "labor": "5",
    "logistics": "15",
    "tax": "6",
}

# 产品库为空时预置的演示选品
DEFAULT_PRODUCTS = [
    {
        "id": "1",
        "sku": "ZS-CJ-001",
        "name": "青山远黛-禅意茶具",
        "spec": "一壶四杯",
        "unit": "套",
        "platformPrice": 150,
        "channelPrice": 299,
        "retailPrice": 599,
        "image": "https://images.unsplash.com/photo-1576020488411-26298acb51bd?auto=format&fit=crop&q=80&w=400",
        "manufacturer": "景德镇文创",
        "category": "茶具",
    },
]

ALL_CATEGORIES = "全部"

LOG_LEVEL = os.getenv("GIFTPLAN_LOG_LEVEL", "INFO")


def setup_logging(level: str = LOG_LEVEL):
    """入口程序调用一次，统一日志格式。"""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
