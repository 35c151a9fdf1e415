"""
文本工具：slug、推广码、逗号分隔标签
"""
import re
import uuid
from typing import List, Optional

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")

SLUG_MAX_LENGTH = 100


def generate_slug(text: str) -> str:
    """
    由标题生成 URL slug

    小写化，非 [a-z0-9] 的连续字符替换为 "-"，去掉首尾 "-"，最长 100 个字符。
    纯中文等无法转换的标题返回 8 位随机串。
    """
    slug = _NON_SLUG_CHARS.sub("-", (text or "").lower()).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    if not slug:
        return uuid.uuid4().hex[:8]
    return slug


def generate_promotion_code() -> str:
    """生成 8 位推广码"""
    return uuid.uuid4().hex[:8].upper()


def split_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]
