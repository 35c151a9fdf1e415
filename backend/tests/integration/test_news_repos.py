"""
新闻与新闻-文章关联 Repository 集成测试
"""
from datetime import timedelta
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitecms.core.exceptions import NotFoundError
from sitecms.db.repositories.news_article_repo import NewsArticleRepository
from sitecms.db.repositories.news_category_repo import NewsCategoryRepository
from sitecms.db.repositories.news_repo import NewsRepository
from sitecms.models.database import News, NewsArticle, NewsCategory, SiteArticle, beijing_now
from sitecms.models.filters import NewsFilter


@pytest.fixture
def news_repo(db_session: AsyncSession) -> NewsRepository:
    return NewsRepository(db_session)


@pytest.fixture
async def world(db_session: AsyncSession) -> NewsCategory:
    return await NewsCategoryRepository(db_session).create_category(NewsCategory(name="World"))


@pytest.fixture
async def news_items(news_repo: NewsRepository, world: NewsCategory):
    now = beijing_now()
    items = [
        News(title="Election Results", category_id=world.id, tags="politics,vote", status="published",
             published_at=now - timedelta(hours=2), view_count=100, is_featured=True, author_id="a1",
             created_at=now - timedelta(hours=4)),
        News(title="Market Update", tags="finance,vote", status="published", priority="high",
             published_at=now - timedelta(days=3), view_count=100, share_count=5, is_breaking=True,
             created_at=now - timedelta(hours=3)),
        News(title="Weather Report", category_id=world.id, status="published",
             published_at=now - timedelta(hours=1), view_count=10,
             created_at=now - timedelta(hours=2)),
        News(title="Sports Preview", tags="sports", subtitle="season opener",
             author_id="a1", created_at=now - timedelta(hours=1)),
    ]
    for item in items:
        await news_repo.create(item, flush=True)
    return items


@pytest.mark.asyncio
class TestNewsRepository:
    """新闻"""

    async def test_create_generates_slug(self, news_repo, news_items):
        assert news_items[0].slug == "election-results"
        assert (await news_repo.get_by_slug("market-update")).id == news_items[1].id

    async def test_lifecycle(self, news_repo, news_items, db_session: AsyncSession):
        draft = news_items[3]
        run_at = beijing_now() - timedelta(minutes=5)

        assert await news_repo.schedule(draft.id, run_at) is True
        due = await news_repo.list_scheduled_due()
        assert [n.id for n in due] == [draft.id]
        assert await news_repo.list_scheduled_due(before=run_at - timedelta(minutes=1)) == []

        assert await news_repo.publish(draft.id) is True
        await db_session.refresh(draft)
        assert draft.status == "published"
        assert draft.published_at is not None

        assert await news_repo.unpublish(draft.id) is True
        assert await news_repo.archive(draft.id) is True
        assert [n.id for n in await news_repo.list_by_status("archived")] == [draft.id]

    async def test_list_expired(self, news_repo, news_items):
        await news_repo.update_by_id(news_items[1].id, expires_at=beijing_now() - timedelta(hours=1))

        expired = await news_repo.list_expired()
        assert [n.id for n in expired] == [news_items[1].id]

    async def test_featured_and_breaking(self, news_repo, news_items):
        assert [n.title for n in await news_repo.list_featured()] == ["Election Results"]
        assert [n.title for n in await news_repo.list_breaking()] == ["Market Update"]
        assert [n.title for n in await news_repo.list_by_priority("high")] == ["Market Update"]

    async def test_list_with_filter(self, news_repo, news_items, world):
        items, total = await news_repo.list_with_filter(NewsFilter(tags=["vote"]))
        assert total == 2

        items, total = await news_repo.list_with_filter(NewsFilter(search="opener"))
        assert [n.title for n in items] == ["Sports Preview"]

        items, total = await news_repo.list_with_filter(
            NewsFilter(category_id=world.id, sort_by="published_at", sort_order="asc")
        )
        assert [n.title for n in items] == ["Election Results", "Weather Report"]

        _, total = await news_repo.list_with_filter(NewsFilter(status="published", is_breaking=False))
        assert total == 2

    async def test_category_author_and_search(self, news_repo, news_items, world):
        assert [n.title for n in await news_repo.list_by_category(world.id)] == [
            "Weather Report", "Election Results",
        ]
        assert [n.title for n in await news_repo.list_by_category_slug("world")] == [
            "Weather Report", "Election Results",
        ]
        assert await news_repo.list_by_category_slug("missing") == []
        assert [n.title for n in await news_repo.list_by_author("a1")] == ["Sports Preview", "Election Results"]
        assert [n.title for n in await news_repo.search("market")] == ["Market Update"]
        assert [n.title for n in await news_repo.search_by_tags(["sports"])] == ["Sports Preview"]
        assert await news_repo.search_by_tags([]) == []

    async def test_list_related(self, news_repo, news_items):
        related = await news_repo.list_related(news_items[0].id)

        # Weather Report 同分类，Market Update 共享 vote 标签；草稿不参与
        assert [n.title for n in related] == ["Weather Report", "Market Update"]

        assert await news_repo.list_related(news_items[3].id) == []

        with pytest.raises(NotFoundError):
            await news_repo.list_related("missing")

    async def test_popular_and_trending(self, news_repo, news_items):
        popular = await news_repo.list_popular()
        assert [n.title for n in popular] == ["Market Update", "Election Results", "Weather Report"]

        trending = await news_repo.list_trending()
        assert [n.title for n in trending] == ["Election Results", "Weather Report"]

    async def test_counters(self, news_repo, news_items, db_session: AsyncSession):
        news = news_items[2]
        await news_repo.increment_view_count(news.id)
        await news_repo.increment_share_count(news.id)
        await news_repo.increment_like_count(news.id)
        await news_repo.increment_comment_count(news.id)
        await db_session.refresh(news)

        assert (news.view_count, news.share_count, news.like_count, news.comment_count) == (11, 1, 1, 1)

    async def test_update_wechat_status(self, news_repo, news_items, db_session: AsyncSession):
        news = news_items[0]

        await news_repo.update_wechat_status(news.id, "draft", wechat_id="draft-1")
        assert (await news_repo.get_by_wechat_draft_id("draft-1")).id == news.id

        await news_repo.update_wechat_status(news.id, "published", wechat_id="pub-1", url="https://mp.example/1")
        await db_session.refresh(news)

        assert news.wechat_status == "published"
        assert news.wechat_draft_id == "draft-1"
        assert news.wechat_url == "https://mp.example/1"
        assert (await news_repo.get_by_wechat_published_id("pub-1")).id == news.id

    async def test_bulk_operations(self, news_repo, news_items):
        ids = [news_items[0].id, news_items[1].id]

        assert await news_repo.bulk_update_status(ids, "archived") == 2
        assert len(await news_repo.list_by_status("archived")) == 2

        assert await news_repo.bulk_delete(ids, deleted_by="editor") == 2
        assert await news_repo.count() == 2


@pytest.fixture
def link_repo(db_session: AsyncSession) -> NewsArticleRepository:
    return NewsArticleRepository(db_session)


@pytest.fixture
async def links(db_session: AsyncSession, link_repo: NewsArticleRepository):
    articles = [SiteArticle(title=f"Article {i}", slug=f"article-{i}") for i in range(3)]
    db_session.add_all(articles)
    await db_session.flush()

    return await link_repo.create_bulk([
        NewsArticle(news_id="n1", article_id=articles[0].id, display_order=2),
        NewsArticle(news_id="n1", article_id=articles[1].id, display_order=1, is_featured=True),
        NewsArticle(news_id="n1", article_id=articles[2].id, display_order=3),
        NewsArticle(news_id="n2", article_id=articles[0].id, display_order=1),
    ])


@pytest.mark.asyncio
class TestNewsArticleRepository:
    """新闻-文章关联"""

    async def test_list_by_news(self, link_repo, links, db_session: AsyncSession):
        db_session.expunge_all()

        items = await link_repo.list_by_news("n1")

        assert [item.article.title for item in items] == ["Article 1", "Article 0", "Article 2"]

    async def test_set_main_story(self, link_repo, links, db_session: AsyncSession):
        first, second, _, other_news = links
        await link_repo.set_main_story("n2", other_news.article_id)

        await link_repo.set_main_story("n1", first.article_id)
        main = await link_repo.set_main_story("n1", second.article_id)
        await db_session.refresh(first)
        await db_session.refresh(other_news)

        assert main.id == second.id
        assert main.is_main_story is True
        assert first.is_main_story is False
        # 其他新闻的头条不受影响
        assert other_news.is_main_story is True

        assert (await link_repo.get_main_story("n1")).id == second.id

    async def test_set_main_story_unlinked(self, link_repo, links):
        with pytest.raises(NotFoundError) as exc_info:
            await link_repo.set_main_story("n2", links[1].article_id)

        assert exc_info.value.message == "article is not linked to news"

    async def test_reorder(self, link_repo, links):
        first, second, third, _ = links

        updated = await link_repo.reorder("n1", {first.article_id: 1, second.article_id: 3, "missing": 9})
        assert updated == 2

        assert await link_repo.update_display_order(third.id, 2) is True
        items = await link_repo.list_by_news("n1")
        assert [item.id for item in items] == [first.id, third.id, second.id]

    async def test_featured_and_lookups(self, link_repo, links):
        assert [item.id for item in await link_repo.list_featured("n1")] == [links[1].id]

        assert await link_repo.set_featured(links[0].id, True) is True
        assert len(await link_repo.list_featured("n1")) == 2

        assert len(await link_repo.list_by_article(links[0].article_id)) == 2
        found = await link_repo.get_by_news_and_article("n2", links[0].article_id)
        assert found.id == links[3].id

    async def test_delete_links(self, link_repo, links):
        assert await link_repo.delete_by_news("n1") == 3
        assert await link_repo.list_by_news("n1") == []

        assert await link_repo.delete_by_article(links[3].article_id) == 1
        assert await link_repo.count() == 0
