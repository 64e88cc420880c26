"""
持久化模块。
以键值形式保存 JSON 文本：产品库和方案各占一个固定键，每次修改都整体重写。
"""
import json
import logging
import os
import tempfile
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from giftplan import config
from giftplan.errors import StorageError
from giftplan.models import GiftSet, ProductRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlobStore:
    """键值存储接口，值为不透明的 JSON 文本。"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, text: str) -> None:
        raise NotImplementedError


class MemoryBlobStore(BlobStore):
    """内存实现，主要用于测试和临时会话。"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, text: str) -> None:
        self._data[key] = text


class FileBlobStore(BlobStore):
    """
    文件实现：每个键对应目录下的一个 <key>.json 文件。
    写入先落到临时文件再替换，避免写一半的文件。
    """

    def __init__(self, directory: str = config.DATA_DIR):
        self.directory = directory

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def put(self, key: str, text: str) -> None:
        os.makedirs(self.directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class CollectionStore(Generic[T]):
    """
    绑定到单个键的集合存储：load() 读出整个列表，save() 整体写回。
    """

    def __init__(
        self,
        blob_store: BlobStore,
        key: str,
        decode: Callable[[dict], T],
        encode: Callable[[T], dict],
        default_factory: Callable[[], List[T]] = list
    ):
        self.blob_store = blob_store
        self.key = key
        self._decode = decode
        self._encode = encode
        self._default_factory = default_factory

    def load(self) -> List[T]:
        text = self.blob_store.get(self.key)
        if text is None:
            return self._default_factory()
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"存储数据已损坏 ({self.key}): {e}") from e
        if not isinstance(raw, list):
            raise StorageError(f"存储数据格式错误 ({self.key}): 需要 JSON 数组")
        if not all(isinstance(item, dict) for item in raw):
            raise StorageError(f"存储数据格式错误 ({self.key}): 数组元素必须是 JSON 对象")
        return [self._decode(item) for item in raw]

    def save(self, items: List[T]) -> None:
        text = json.dumps([self._encode(item) for item in items], ensure_ascii=False)
        self.blob_store.put(self.key, text)
        logger.debug("已保存 %s (%d 条)", self.key, len(items))


def _default_products() -> List[ProductRecord]:
    return [ProductRecord.from_dict(p) for p in config.DEFAULT_PRODUCTS]


def product_store(blob_store: BlobStore) -> CollectionStore[ProductRecord]:
    return CollectionStore(
        blob_store,
        config.STORAGE_KEY_PRODUCTS,
        decode=ProductRecord.from_dict,
        encode=lambda p: p.to_dict(),
        default_factory=_default_products,
    )


def gift_set_store(blob_store: BlobStore) -> CollectionStore[GiftSet]:
    return CollectionStore(
        blob_store,
        config.STORAGE_KEY_GIFTSETS,
        decode=GiftSet.from_dict,
        encode=lambda s: s.to_dict(),
    )
