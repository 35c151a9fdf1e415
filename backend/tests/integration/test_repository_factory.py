"""
RepositoryFactory 集成测试

工厂注入绑定内存数据库的会话工厂，验证事务边界。
"""
import pytest

from sitecms.db import repository_factory as factory_module
from sitecms.db.repositories.hit_repo import HitRepository
from sitecms.db.repositories.user_repo import UserRepository
from sitecms.db.repository_factory import RepositoryFactory, get_repository_factory
from sitecms.models.database import User


@pytest.fixture
def factory(session_factory) -> RepositoryFactory:
    return RepositoryFactory(session_factory=session_factory)


@pytest.mark.asyncio
class TestRepositoryFactory:
    """RepositoryFactory 测试套件"""

    async def test_commit_on_success(self, factory):
        async with factory.create_session() as session:
            await factory.create_user_repo(session).create(User(username="alice", email="alice@example.com"))

        async with factory.create_session() as session:
            user = await factory.create_user_repo(session).get_by_username("alice")

        assert user is not None
        assert user.email == "alice@example.com"

    async def test_rollback_on_error(self, factory):
        with pytest.raises(RuntimeError):
            async with factory.create_session() as session:
                await factory.create_user_repo(session).create(
                    User(username="bob", email="bob@example.com"), flush=True
                )
                raise RuntimeError("boom")

        async with factory.create_session() as session:
            assert await factory.create_user_repo(session).get_by_username("bob") is None

    async def test_create_all_repos_share_session(self, factory):
        async with factory.create_session() as session:
            repos = factory.create_all_repos(session)

        assert len(repos) == 20
        assert isinstance(repos["user"], UserRepository)
        assert isinstance(repos["hit"], HitRepository)
        assert all(repo.session is session for repo in repos.values())


def test_get_repository_factory_singleton(monkeypatch):
    """全局工厂只创建一次"""
    monkeypatch.setattr(factory_module, "_repository_factory", None)

    first = get_repository_factory()
    second = get_repository_factory()

    assert first is second
