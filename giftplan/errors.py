"""
异常定义模块。
只有导入、导出、持久化和 AI 选品这些边界会抛出异常，核算本身不会出错。
"""


class GiftPlanError(Exception):
    """所有业务异常的基类。"""


class DecodeError(GiftPlanError):
    """文件字节无法按任何支持的编码解析。"""


class FormatError(GiftPlanError):
    """表格内容不足：没有表头或只有表头没有数据。"""


class RecommendationParseError(GiftPlanError):
    """AI 返回内容不是约定的 JSON 结构。"""


class StorageError(GiftPlanError):
    """持久化数据损坏，无法反序列化。"""


class NotFoundError(GiftPlanError, KeyError):
    """按 ID 找不到方案、档位或选品。"""

    def __str__(self):
        return str(self.args[0]) if self.args else "记录不存在"
