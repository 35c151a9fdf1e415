"""
访问记录 Repository 集成测试
"""
from datetime import timedelta
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitecms.db.repositories.hit_repo import HitRepository
from sitecms.models.database import Hit, beijing_now
from sitecms.models.filters import HitAnalyticsFilter


@pytest.fixture
def hit_repo(db_session: AsyncSession) -> HitRepository:
    return HitRepository(db_session)


@pytest.fixture
def days_ago():
    now = beijing_now()

    def _at(days: int, hour: int, minute: int = 0):
        return (now - timedelta(days=days)).replace(hour=hour, minute=minute, second=0, microsecond=0)

    return _at


@pytest.fixture
async def hits(hit_repo: HitRepository, days_ago):
    """文章 a1 的浏览 / 阅读 / 分享记录，外加一条新闻访问、一条过期记录和一条已删除记录"""
    article = {"resource_id": "a1", "resource_type": "article"}
    shanghai_mobile = {
        "country": "China", "city": "Shanghai", "device_type": "mobile", "platform": "ios", "browser": "Safari",
    }
    return await hit_repo.create_batch(
        [
            Hit(**article, **shanghai_mobile, hit_type="view", user_id="u1", session_id="sess1",
                referrer="https://google.com", promotion_code="P1", created_at=days_ago(2, 9)),
            Hit(**article, hit_type="view", user_id="u2", session_id="sess2", country="China", city="Beijing",
                device_type="desktop", platform="windows", browser="Chrome",
                referrer="https://google.com", promotion_code="P1", created_at=days_ago(2, 21)),
            Hit(**article, **shanghai_mobile, hit_type="read", user_id="u1", session_id="sess1",
                read_duration=45, read_percentage=90.0, scroll_depth=80.0, created_at=days_ago(1, 9, 30)),
            Hit(**article, hit_type="read", user_id="u2", session_id="sess2", read_duration=200,
                read_percentage=50.0, scroll_depth=40.0, referrer="https://bing.com", created_at=days_ago(1, 21)),
            Hit(**article, hit_type="share", user_id="u1", promotion_code="P1", created_at=days_ago(1, 21, 30)),
            Hit(resource_id="n1", resource_type="news", hit_type="view", promotion_code="P2",
                created_at=days_ago(1, 9, 45)),
            Hit(**article, hit_type="view", user_id="u3", created_at=days_ago(60, 12)),
            Hit(**article, hit_type="view", user_id="u4", is_deleted=True, created_at=days_ago(1, 12)),
        ],
        flush=True,
    )


ARTICLE_LAST_30_DAYS = HitAnalyticsFilter(resource_id="a1", resource_type="article", days=30)


@pytest.mark.asyncio
class TestHitQueries:
    """访问记录查询"""

    async def test_list_and_count(self, hit_repo, hits):
        assert len(await hit_repo.list_by_resource("a1")) == 6
        assert await hit_repo.list_by_resource("a1", resource_type="news") == []
        assert await hit_repo.count_by_resource("n1", "news") == 1
        assert await hit_repo.count_by_resource("a1") == 6
        assert await hit_repo.count_by_user("u1") == 3

        assert [h.id for h in await hit_repo.list_by_session("sess1")] == [hits[0].id, hits[2].id]
        assert [h.id for h in await hit_repo.list_by_promotion_code("P2")] == [hits[5].id]
        assert [h.hit_type for h in await hit_repo.list_by_user("u1")] == ["share", "read", "view"]

    async def test_count_by_filter(self, hit_repo, hits):
        assert await hit_repo.count_by_filter(HitAnalyticsFilter(country="China")) == 3
        assert await hit_repo.count_by_filter(ARTICLE_LAST_30_DAYS) == 5
        assert await hit_repo.count_by_filter(HitAnalyticsFilter(hit_type="read", browser="Safari")) == 1


@pytest.mark.asyncio
class TestHitAnalytics:
    """访问汇总统计"""

    async def test_get_analytics(self, hit_repo, hits):
        analytics = await hit_repo.get_analytics(ARTICLE_LAST_30_DAYS)

        assert analytics.total_hits == 5
        assert (analytics.total_views, analytics.total_reads, analytics.total_shares) == (2, 2, 1)
        assert analytics.unique_users == 2
        assert analytics.unique_sessions == 2
        assert analytics.avg_read_time == pytest.approx(122.5)
        assert analytics.avg_scroll_depth == pytest.approx(24.0)
        assert analytics.completion_rate == 50.0
        assert analytics.last_activity is not None

        assert [(c.city, c.count) for c in analytics.top_countries] == [("Shanghai", 2), ("Beijing", 1)]
        assert [(d.device_type, d.platform, d.count) for d in analytics.top_devices] == [
            ("mobile", "ios", 2), ("desktop", "windows", 1),
        ]
        assert [(b.browser, b.count) for b in analytics.top_browsers] == [("Safari", 2), ("Chrome", 1)]

    async def test_get_analytics_without_filter(self, hit_repo, hits):
        analytics = await hit_repo.get_analytics()

        # 软删除记录不计入
        assert analytics.total_hits == 7

    async def test_empty_analytics(self, hit_repo):
        analytics = await hit_repo.get_analytics(HitAnalyticsFilter(resource_id="missing"))

        assert analytics.total_hits == 0
        assert analytics.avg_read_time == 0.0
        assert analytics.completion_rate == 0.0
        assert analytics.top_countries == []

    async def test_geographic_and_device_stats(self, hit_repo, hits):
        geo = await hit_repo.get_geographic_stats(limit=1)
        assert [(g.country, g.city, g.count) for g in geo] == [("China", "Shanghai", 2)]

        devices = await hit_repo.get_device_stats(HitAnalyticsFilter(device_type="mobile"))
        assert [(d.device_type, d.platform, d.count) for d in devices] == [("mobile", "ios", 2)]

    async def test_hourly_stats(self, hit_repo, hits):
        hourly = await hit_repo.get_hourly_stats(ARTICLE_LAST_30_DAYS)

        assert [h.hour for h in hourly] == list(range(24))
        assert hourly[9].count == 2
        assert hourly[21].count == 3
        assert sum(h.count for h in hourly) == 5

    async def test_daily_stats(self, hit_repo, hits, days_ago):
        daily = await hit_repo.get_daily_stats("a1", "article", days=30)

        assert [d.day for d in daily] == [days_ago(2, 0).date(), days_ago(1, 0).date()]
        first, second = daily
        assert (first.views, first.reads, first.unique_users) == (2, 0, 2)
        assert first.avg_read_time == 0.0
        assert (second.views, second.reads, second.unique_users) == (0, 2, 2)
        assert second.avg_read_time == pytest.approx(122.5)

    async def test_top_referrers(self, hit_repo, hits):
        referrers = await hit_repo.get_top_referrers(ARTICLE_LAST_30_DAYS)

        assert [(r.referrer, r.count, r.unique_users) for r in referrers] == [
            ("https://google.com", 2, 2),
            ("https://bing.com", 1, 1),
        ]

    async def test_user_engagement(self, hit_repo, hits):
        engagement = await hit_repo.get_user_engagement("u1")

        assert engagement.total_hits == 3
        assert engagement.total_read_time == 45
        assert engagement.avg_read_time == 45.0
        assert engagement.last_activity is not None


@pytest.mark.asyncio
class TestReadingAnalytics:
    """阅读分析"""

    async def test_reading_analytics(self, hit_repo, hits):
        reading = await hit_repo.get_reading_analytics("a1")

        assert reading.total_reads == 2
        assert reading.avg_read_time == pytest.approx(122.5)
        assert reading.median_read_time == pytest.approx(122.5)
        assert reading.avg_scroll_depth == pytest.approx(60.0)
        assert reading.completion_rate == 50.0
        assert [(b.time_range, b.count, b.percentage) for b in reading.read_time_distribution] == [
            ("0-30s", 0, 0.0),
            ("30-60s", 1, 50.0),
            ("1-2m", 0, 0.0),
            ("2-5m", 1, 50.0),
            ("5m+", 0, 0.0),
        ]

    async def test_no_reads(self, hit_repo, hits):
        reading = await hit_repo.get_reading_analytics("n1")

        assert reading.total_reads == 0
        assert reading.read_time_distribution == []


@pytest.mark.asyncio
class TestPromotionStats:
    """推广码统计"""

    async def test_promotion_stats(self, hit_repo, hits):
        stats = await hit_repo.get_promotion_stats("P1")

        assert stats.total_hits == 3
        assert stats.unique_users == 2
        assert (stats.views, stats.reads, stats.shares) == (2, 0, 1)

    async def test_top_promotions(self, hit_repo, hits):
        top = await hit_repo.get_top_promotions()

        assert [(p.promotion_code, p.total_hits) for p in top] == [("P1", 3), ("P2", 1)]
        assert len(await hit_repo.get_top_promotions(limit=1)) == 1


@pytest.mark.asyncio
class TestHitCleanup:
    """历史记录清理"""

    async def test_delete_old_hits(self, hit_repo, hits):
        deleted = await hit_repo.delete_old_hits(beijing_now() - timedelta(days=30))

        assert deleted == 1
        assert await hit_repo.count_by_user("u3") == 0
        assert await hit_repo.count_by_resource("a1") == 5
