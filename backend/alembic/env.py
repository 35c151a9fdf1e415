"""
Alembic 环境配置

迁移目标为 SQLModel.metadata；Alembic 使用同步驱动（psycopg），
连接地址由应用配置的 DATABASE_URL（asyncpg）转换得到。
"""
from logging.config import fileConfig
from sqlalchemy import engine_from_config
from sqlalchemy import pool
from alembic import context
from sqlmodel import SQLModel

from sitecms.config.settings import settings
# 导入模型模块以注册所有表
import sitecms.models.database  # noqa: F401

config = context.config


def _sync_database_url() -> str:
    return settings.DATABASE_URL.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


config.set_main_option("sqlalchemy.url", _sync_database_url())

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def run_migrations_offline() -> None:
    """离线模式：只输出 SQL 脚本，不连接数据库"""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """在线模式：使用同步引擎连接数据库执行迁移"""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
