"""
文本工具单元测试
"""
from sitecms.utils.text import (
    SLUG_MAX_LENGTH,
    generate_promotion_code,
    generate_slug,
    split_tags,
)


class TestGenerateSlug:
    """测试 slug 生成"""

    def test_basic_title(self):
        assert generate_slug("Hello World") == "hello-world"

    def test_collapses_separators(self):
        assert generate_slug("  Spring -- Sale!! 2024  ") == "spring-sale-2024"

    def test_max_length(self):
        slug = generate_slug("a" * 300)
        assert len(slug) == SLUG_MAX_LENGTH

    def test_no_trailing_dash_after_truncation(self):
        slug = generate_slug("a" * 99 + " bcd")
        assert not slug.endswith("-")

    def test_untransliterable_title(self):
        """纯中文标题生成 8 位随机串"""
        slug = generate_slug("年度大会")
        assert len(slug) == 8
        assert generate_slug("年度大会") != slug

    def test_empty_title(self):
        assert len(generate_slug("")) == 8


class TestPromotionCode:
    def test_format(self):
        code = generate_promotion_code()
        assert len(code) == 8
        assert code == code.upper()

    def test_unique(self):
        assert len({generate_promotion_code() for _ in range(20)}) == 20


class TestTags:
    """测试逗号分隔标签"""

    def test_split_tags(self):
        assert split_tags("python, async ,,db") == ["python", "async", "db"]

    def test_split_empty(self):
        assert split_tags(None) == []
        assert split_tags("") == []
