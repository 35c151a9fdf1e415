"""
文章与图片 Repository 集成测试
"""
from datetime import timedelta
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitecms.core.exceptions import NotFoundError
from sitecms.db.repositories.article_category_repo import ArticleCategoryRepository
from sitecms.db.repositories.site_article_repo import SiteArticleRepository
from sitecms.db.repositories.site_image_repo import SiteImageRepository
from sitecms.models.database import ArticleCategory, Hit, SiteArticle, SiteImage, beijing_now
from sitecms.models.filters import SiteArticleFilter, SiteImageFilter


@pytest.fixture
def article_repo(db_session: AsyncSession) -> SiteArticleRepository:
    return SiteArticleRepository(db_session)


@pytest.fixture
async def category(db_session: AsyncSession) -> ArticleCategory:
    return await ArticleCategoryRepository(db_session).create_category(ArticleCategory(name="Guides"))


@pytest.fixture
async def articles(article_repo: SiteArticleRepository, category: ArticleCategory):
    now = beijing_now()
    items = [
        SiteArticle(title="Getting Started", author="alice", category_id=category.id, view_count=50,
                    read_count=5, created_at=now - timedelta(hours=3)),
        SiteArticle(title="Advanced Topics", author="bob", category_id=category.id, view_count=10,
                    read_count=20, content="deep dive into asyncio", created_at=now - timedelta(hours=2)),
        SiteArticle(title="Draft Notes", author="alice", created_at=now - timedelta(hours=1)),
    ]
    for item in items:
        await article_repo.create(item, flush=True)
    return items


@pytest.mark.asyncio
class TestSiteArticleRepository:
    """站点文章"""

    async def test_create_generates_slug_and_code(self, article_repo, articles):
        first = articles[0]

        assert first.slug == "getting-started"
        assert len(first.promotion_code) == 8
        assert (await article_repo.get_by_promotion_code(first.promotion_code)).id == first.id

    async def test_create_keeps_explicit_values(self, article_repo):
        article = await article_repo.create(
            SiteArticle(title="Custom", slug="my-slug", promotion_code="PROMO001"), flush=True
        )

        assert article.slug == "my-slug"
        assert article.promotion_code == "PROMO001"

    async def test_get_with_category(self, article_repo, articles, db_session: AsyncSession):
        article_id = articles[0].id
        db_session.expunge_all()

        article = await article_repo.get_by_id(article_id, with_category=True)
        assert article.category.name == "Guides"

        by_slug = await article_repo.get_by_slug("advanced-topics")
        assert by_slug.category.name == "Guides"

    async def test_publish_keeps_first_published_at(self, article_repo, articles, db_session: AsyncSession):
        first, second, _ = articles
        original = beijing_now() - timedelta(days=3)
        await article_repo.update_by_id(second.id, published_at=original)

        assert await article_repo.publish([first.id, second.id]) == 2
        await db_session.refresh(first)
        await db_session.refresh(second)

        assert first.is_published is True
        assert first.published_at is not None
        assert second.published_at == original

        assert await article_repo.count_published() == 2
        assert await article_repo.count_drafts() == 1
        assert await article_repo.publish([]) == 0

        assert await article_repo.unpublish([first.id]) == 1
        assert await article_repo.count_published() == 1

    async def test_lists(self, article_repo, articles, category):
        await article_repo.publish([articles[0].id, articles[1].id])

        assert [a.title for a in await article_repo.list_by_category(category.id)] == [
            "Advanced Topics", "Getting Started",
        ]
        assert [a.title for a in await article_repo.list_drafts()] == ["Draft Notes"]
        assert [a.title for a in await article_repo.list_by_author("alice")] == ["Draft Notes", "Getting Started"]
        assert [a.title for a in await article_repo.list_most_viewed()] == ["Getting Started", "Advanced Topics"]
        assert [a.title for a in await article_repo.list_most_read(limit=1)] == ["Advanced Topics"]
        assert len(await article_repo.list_popular(days=30)) == 2
        assert len(await article_repo.list_published()) == 2

        assert await article_repo.count_by_category(category.id) == 2
        assert await article_repo.count_by_author("alice") == 2

    async def test_list_with_filter(self, article_repo, articles, category):
        items, total = await article_repo.list_with_filter(SiteArticleFilter(search="asyncio"))
        assert total == 1
        assert items[0].title == "Advanced Topics"

        items, total = await article_repo.list_with_filter(
            SiteArticleFilter(category_id=category.id, sort_by="view_count", sort_order="desc")
        )
        assert total == 2
        assert [a.title for a in items] == ["Getting Started", "Advanced Topics"]

        _, total = await article_repo.list_with_filter(SiteArticleFilter(author="alice", is_published=False))
        assert total == 2

    async def test_counters(self, article_repo, articles, db_session: AsyncSession):
        article = articles[2]

        assert await article_repo.increment_view_count(article.id) is True
        assert await article_repo.increment_read_count(article.id) is True
        await db_session.refresh(article)

        assert article.view_count == 1
        assert article.read_count == 1

    async def test_get_with_analytics(self, article_repo, articles, db_session: AsyncSession):
        article = articles[0]
        db_session.add_all([
            Hit(resource_id=article.id, resource_type="article", hit_type="view", user_id="u1"),
            Hit(resource_id=article.id, resource_type="article", hit_type="view", user_id="u2"),
            Hit(resource_id=article.id, resource_type="article", hit_type="read", user_id="u1", read_duration=60),
            Hit(resource_id=article.id, resource_type="article", hit_type="share", user_id="u1"),
            Hit(resource_id=article.id, resource_type="article", hit_type="view",
                created_at=beijing_now() - timedelta(days=60)),
            Hit(resource_id=article.id, resource_type="news", hit_type="view"),
        ])
        await db_session.flush()

        analytics = await article_repo.get_with_analytics(article.id, days=30)

        assert analytics.article.id == article.id
        assert analytics.period_days == 30
        assert analytics.total_hits == 4
        assert analytics.views == 2
        assert analytics.reads == 1
        assert analytics.shares == 1
        assert analytics.unique_visitors == 2
        assert analytics.avg_read_time == 60.0

    async def test_get_with_analytics_missing(self, article_repo):
        with pytest.raises(NotFoundError):
            await article_repo.get_with_analytics("missing")


@pytest.fixture
def image_repo(db_session: AsyncSession) -> SiteImageRepository:
    return SiteImageRepository(db_session)


@pytest.fixture
async def images(image_repo: SiteImageRepository):
    now = beijing_now()
    return await image_repo.create_batch(
        [
            SiteImage(filename="logo.png", title="Company Logo", mime_type="image/png", file_size=1000,
                      tags="brand,logo", category_id="c1", media_id="m-1", created_at=now - timedelta(hours=3)),
            SiteImage(filename="banner.jpg", mime_type="image/jpeg", file_size=5000,
                      tags="brand, banner", category_id="c1", created_at=now - timedelta(hours=2)),
            SiteImage(filename="photo.jpg", mime_type="image/jpeg", file_size=3000,
                      tags="event", is_public=False, created_at=now - timedelta(hours=1)),
            SiteImage(filename="old.png", file_size=9999, tags="brand", is_deleted=True),
        ],
        flush=True,
    )


@pytest.mark.asyncio
class TestSiteImageRepository:
    """站点图片"""

    async def test_lookups(self, image_repo, images):
        assert (await image_repo.get_by_media_id("m-1")).filename == "logo.png"
        assert [i.filename for i in await image_repo.list_by_category("c1")] == ["banner.jpg", "logo.png"]
        assert [i.filename for i in await image_repo.list_by_category(None)] == ["photo.jpg"]
        assert [i.filename for i in await image_repo.search_by_name("logo")] == ["logo.png"]
        assert {i.filename for i in await image_repo.search_by_tags(["banner", "event"])} == {
            "banner.jpg", "photo.jpg",
        }
        assert await image_repo.search_by_tags([]) == []

    async def test_list_with_filter(self, image_repo, images):
        items, total = await image_repo.list_with_filter(SiteImageFilter(mime_type="image/jpeg"))
        assert total == 2

        items, total = await image_repo.list_with_filter(SiteImageFilter(uncategorized=True))
        assert [i.filename for i in items] == ["photo.jpg"]

        items, total = await image_repo.list_with_filter(
            SiteImageFilter(min_size=2000, sort_by="file_size", sort_order="asc")
        )
        assert [i.filename for i in items] == ["photo.jpg", "banner.jpg"]

        _, total = await image_repo.list_with_filter(SiteImageFilter(tags=["brand"], is_public=True))
        assert total == 2

    async def test_bulk_operations(self, image_repo, images):
        logo, banner, photo, _ = images

        assert await image_repo.bulk_update_category([photo.id], "c2") == 1
        assert await image_repo.bulk_update_visibility([logo.id, banner.id], False) == 2
        assert await image_repo.get_count_by_category() == {"c1": 2, "c2": 1}

        assert await image_repo.bulk_delete([logo.id]) == 1
        assert await image_repo.count() == 2

    async def test_counters(self, image_repo, images, db_session: AsyncSession):
        logo = images[0]
        await image_repo.increment_view_count(logo.id)
        await image_repo.increment_download_count(logo.id)
        await db_session.refresh(logo)

        assert logo.view_count == 1
        assert logo.download_count == 1

    async def test_statistics(self, image_repo, images):
        assert await image_repo.get_total_size() == 9000
        assert await image_repo.get_count_by_category() == {"c1": 2, "uncategorized": 1}

        tags = await image_repo.get_popular_tags()
        assert [(t.tag, t.count) for t in tags] == [
            ("brand", 2), ("banner", 1), ("event", 1), ("logo", 1),
        ]
        assert len(await image_repo.get_popular_tags(limit=1)) == 1
