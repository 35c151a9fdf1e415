"""
视频与观看会话 Repository 集成测试
"""
from datetime import timedelta
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitecms.core.exceptions import NotFoundError
from sitecms.db.repositories.video_category_repo import VideoCategoryRepository
from sitecms.db.repositories.video_repo import VideoRepository
from sitecms.db.repositories.video_session_repo import VideoSessionRepository
from sitecms.models.database import Video, VideoCategory, VideoSession, beijing_now
from sitecms.models.filters import VideoFilter, VideoSessionFilter


@pytest.fixture
def video_repo(db_session: AsyncSession) -> VideoRepository:
    return VideoRepository(db_session)


@pytest.fixture
async def talks(db_session: AsyncSession) -> VideoCategory:
    return await VideoCategoryRepository(db_session).create_category(VideoCategory(name="Talks"))


@pytest.fixture
async def videos(video_repo: VideoRepository, talks: VideoCategory):
    now = beijing_now()
    items = [
        Video(title="Keynote Live", category_id=talks.id, tags="ai,keynote", status="live", video_type="live",
              start_time=now - timedelta(hours=1), view_count=100, like_count=10, engagement_score=8.0,
              bound_event_id="e1", created_at=now - timedelta(hours=3)),
        Video(title="Panel Discussion", category_id=talks.id, tags="panel", status="scheduled",
              start_time=now + timedelta(days=1), view_count=50, engagement_score=9.0,
              created_at=now - timedelta(hours=2)),
        Video(title="Old Demo", status="ended", view_count=200, watch_time=500, engagement_score=1.0,
              created_at=now - timedelta(days=30)),
        Video(title="Removed", view_count=999, is_deleted=True),
    ]
    for item in items:
        await video_repo.create(item, flush=True)
    return items


@pytest.mark.asyncio
class TestVideoRepository:
    """视频"""

    async def test_create_and_lookup(self, video_repo, videos, db_session: AsyncSession):
        assert videos[0].slug == "keynote-live"

        db_session.expunge_all()
        found = await video_repo.get_by_slug("keynote-live")
        assert found.category.name == "Talks"

    async def test_filtered_queries(self, video_repo, videos, talks):
        items, total = await video_repo.list_with_filter(VideoFilter(status="live"))
        assert [v.title for v in items] == ["Keynote Live"]

        items, total = await video_repo.search("panel")
        assert total == 1
        assert items[0].title == "Panel Discussion"

        items, total = await video_repo.list_by_tags(["ai"], VideoFilter(category_id=talks.id))
        assert [v.title for v in items] == ["Keynote Live"]

        now = beijing_now()
        items, total = await video_repo.list_by_date_range(now - timedelta(days=1), now)
        assert total == 2
        assert [v.title for v in items] == ["Panel Discussion", "Keynote Live"]

        items, _ = await video_repo.list_with_filter(VideoFilter(sort_by="view_count", sort_order="asc"))
        assert [v.title for v in items] == ["Panel Discussion", "Keynote Live", "Old Demo"]

    async def test_status_lists(self, video_repo, videos):
        assert [v.title for v in await video_repo.list_live()] == ["Keynote Live"]
        assert [v.title for v in await video_repo.list_scheduled()] == ["Panel Discussion"]
        assert await video_repo.list_scheduled(before=beijing_now()) == []
        assert [v.title for v in await video_repo.list_by_status("ended")] == ["Old Demo"]

    async def test_category_and_event_lists(self, video_repo, videos, talks):
        assert [v.title for v in await video_repo.list_by_category(talks.id)] == [
            "Panel Discussion", "Keynote Live",
        ]
        assert [v.title for v in await video_repo.list_by_category_slug("talks")] == [
            "Panel Discussion", "Keynote Live",
        ]
        assert [v.title for v in await video_repo.list_by_event("e1")] == ["Keynote Live"]

    async def test_rankings(self, video_repo, videos):
        assert [v.title for v in await video_repo.list_popular()] == [
            "Old Demo", "Keynote Live", "Panel Discussion",
        ]
        assert [v.title for v in await video_repo.list_popular(since=beijing_now() - timedelta(days=1))] == [
            "Keynote Live", "Panel Discussion",
        ]
        assert [v.title for v in await video_repo.list_trending()] == ["Panel Discussion", "Keynote Live"]
        assert [v.title for v in await video_repo.list_recent(limit=2)] == ["Panel Discussion", "Keynote Live"]

    async def test_list_related(self, video_repo, videos):
        assert [v.title for v in await video_repo.list_related(videos[0].id)] == ["Panel Discussion"]
        assert await video_repo.list_related(videos[2].id) == []

        with pytest.raises(NotFoundError):
            await video_repo.list_related("missing")

    async def test_list_related_by_shared_tags(self, video_repo, videos):
        """没有分类时按共享标签匹配"""
        intro = await video_repo.create(Video(title="Python Intro", tags="python,async"), flush=True)
        deep_dive = await video_repo.create(Video(title="Python Deep Dive", tags="python"), flush=True)

        assert [v.title for v in await video_repo.list_related(intro.id)] == ["Python Deep Dive"]
        assert [v.title for v in await video_repo.list_related(deep_dive.id)] == ["Python Intro"]

    async def test_live_transitions(self, video_repo, videos, db_session: AsyncSession):
        keynote, panel = videos[0], videos[1]

        assert await video_repo.start_live(panel.id) is True
        assert await video_repo.end_live(keynote.id) is True
        await db_session.refresh(keynote)
        await db_session.refresh(panel)

        assert panel.status == "live"
        assert keynote.status == "ended"
        assert keynote.end_time is not None

        assert await video_repo.update_status(panel.id, "archived") is True
        assert await video_repo.bulk_update_status([keynote.id, panel.id], "draft") == 2
        assert len(await video_repo.list_by_status("draft")) == 2

    async def test_associations(self, video_repo, videos, talks, db_session: AsyncSession):
        demo = videos[2]

        assert await video_repo.associate_with_event(demo.id, "e2") is True
        assert [v.id for v in await video_repo.list_by_event("e2")] == [demo.id]

        assert await video_repo.disassociate_from_event(demo.id) is True
        assert await video_repo.list_by_event("e2") == []

        assert await video_repo.update_category(demo.id, talks.id) is True
        assert len(await video_repo.list_by_category(talks.id)) == 3

    async def test_counters_and_metrics(self, video_repo, videos, db_session: AsyncSession):
        video = videos[1]
        await video_repo.increment_view_count(video.id)
        await video_repo.increment_like_count(video.id)
        await video_repo.increment_share_count(video.id)
        await video_repo.increment_comment_count(video.id)
        await video_repo.add_watch_time(video.id, 120)

        assert await video_repo.update_engagement_metrics(video.id, {"unknown": 1.0}) is False
        assert await video_repo.update_engagement_metrics(
            video.id, {"completion_rate": 75.0, "engagement_score": 9.5, "unknown": 1.0}
        ) is True
        await db_session.refresh(video)

        assert (video.view_count, video.like_count, video.share_count, video.comment_count) == (51, 1, 1, 1)
        assert video.watch_time == 120
        assert video.completion_rate == 75.0
        assert video.engagement_score == 9.5

    async def test_statistics(self, video_repo, videos, talks):
        stats = await video_repo.get_statistics()

        assert stats.total_videos == 3
        assert (stats.live_videos, stats.scheduled_videos, stats.ended_videos) == (1, 1, 1)
        assert stats.total_views == 350
        assert stats.total_likes == 10
        assert stats.total_watch_time == 500
        assert stats.avg_engagement_score == pytest.approx(6.0)

        category_stats = await video_repo.get_category_statistics(talks.id)
        assert category_stats.total_videos == 2
        assert category_stats.total_views == 150
        assert category_stats.avg_engagement_score == pytest.approx(8.5)


@pytest.fixture
def session_repo(db_session: AsyncSession) -> VideoSessionRepository:
    return VideoSessionRepository(db_session)


@pytest.fixture
async def watch_sessions(session_repo: VideoSessionRepository):
    now = beijing_now()
    return await session_repo.create_batch(
        [
            VideoSession(video_id="v1", user_id="u1", session_id="sess-1", device_type="mobile",
                         start_time=now - timedelta(minutes=30)),
            VideoSession(video_id="v1", user_id="u2", session_id="sess-2", device_type="desktop",
                         watched_duration=100, completion_percentage=50.0,
                         start_time=now - timedelta(minutes=20)),
            VideoSession(video_id="v1", session_id="sess-3", status="paused",
                         start_time=now - timedelta(days=2), last_activity=now - timedelta(days=2)),
            VideoSession(video_id="v2", user_id="u1", session_id="sess-4"),
        ],
        flush=True,
    )


@pytest.mark.asyncio
class TestVideoSessionRepository:
    """观看会话"""

    async def test_update_progress_completes_once(self, session_repo, watch_sessions):
        first = watch_sessions[0]

        progress = await session_repo.update_progress(first.id, position=100, watched_seconds=90, percentage=40.0)
        assert progress.is_completed is False
        assert progress.status == "active"

        completed = await session_repo.update_progress(first.id, position=300, watched_seconds=280, percentage=95.0)
        assert completed.is_completed is True
        assert completed.status == "completed"
        completed_at = completed.completed_at
        assert completed_at is not None

        again = await session_repo.update_progress(first.id, position=310, watched_seconds=290, percentage=100.0)
        assert again.completed_at == completed_at
        assert again.watched_duration == 290

    async def test_update_progress_missing(self, session_repo):
        with pytest.raises(NotFoundError):
            await session_repo.update_progress("missing", 0, 0, 0.0)

    async def test_lookups(self, session_repo, watch_sessions):
        assert (await session_repo.get_by_session_id("sess-2")).id == watch_sessions[1].id
        assert (await session_repo.get_by_video_and_session("v1", "sess-3")).id == watch_sessions[2].id
        assert len(await session_repo.list_by_video_and_user("v1", "u1")) == 1
        assert {s.session_id for s in await session_repo.list_active_for_video("v1")} == {"sess-1", "sess-2"}
        assert {s.session_id for s in await session_repo.list_active_for_user("u1")} == {"sess-1", "sess-4"}

    async def test_filtered_lists(self, session_repo, watch_sessions):
        await session_repo.update_progress(watch_sessions[0].id, 300, 280, 95.0)

        items, total = await session_repo.list_by_video("v1", VideoSessionFilter(is_completed=True))
        assert total == 1
        assert items[0].session_id == "sess-1"

        items, total = await session_repo.list_by_video(
            "v1", VideoSessionFilter(min_completion=40.0, sort_by="completion_percentage", sort_order="asc")
        )
        assert [s.session_id for s in items] == ["sess-2", "sess-1"]

        _, total = await session_repo.list_by_user("u1", VideoSessionFilter())
        assert total == 2

    async def test_statistics(self, session_repo, watch_sessions):
        await session_repo.update_progress(watch_sessions[0].id, 300, 280, 95.0)

        stats = await session_repo.get_statistics("v1")

        assert stats.total_sessions == 3
        assert stats.unique_viewers == 2
        assert stats.completed_sessions == 1
        assert stats.completion_rate == 33.33
        assert stats.total_watch_time == 380
        assert stats.device_breakdown == {"mobile": 1, "desktop": 1}

        user_stats = await session_repo.get_user_statistics("u1")
        assert user_stats.total_sessions == 2
        assert user_stats.completion_rate == 50.0

    async def test_empty_statistics(self, session_repo):
        stats = await session_repo.get_statistics("nothing")

        assert stats.total_sessions == 0
        assert stats.completion_rate == 0.0
        assert stats.device_breakdown == {}

    async def test_mark_inactive_and_cleanup(self, session_repo, watch_sessions):
        now = beijing_now()

        assert await session_repo.mark_inactive(now - timedelta(days=1)) == 1
        assert await session_repo.cleanup_abandoned(now - timedelta(days=1)) == 1
        assert await session_repo.get_by_session_id("sess-3") is None
        assert await session_repo.count(video_id="v1") == 2
