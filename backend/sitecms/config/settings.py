"""
应用配置（基于 pydantic-settings）

配置分组：
- 应用配置：运行环境、调试模式、服务名
- 数据库配置：PostgreSQL 连接信息与连接池参数
- 分页配置：默认页大小与上限
- 业务常量：阅读完成阈值、视频完成阈值、二维码默认有效期等
"""
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """全局配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== 应用配置 ====================
    ENVIRONMENT: str = Field("development", description="运行环境")
    DEBUG: bool = Field(False, description="调试模式")
    PROJECT_NAME: str = "Site CMS"
    SERVICE_NAME: str = Field("sitecms-data", description="日志中的服务名")

    # ==================== 数据库配置 ====================
    POSTGRES_HOST: str = Field("localhost", description="PostgreSQL 主机")
    POSTGRES_PORT: int = Field(5432, description="PostgreSQL 端口")
    POSTGRES_USER: str = Field("sitecms_user", description="数据库用户名")
    POSTGRES_PASSWORD: str = Field("sitecms_pass", description="数据库密码")
    POSTGRES_DB: str = Field("sitecms_db", description="数据库名称")
    DATABASE_URL_OVERRIDE: Optional[str] = Field(
        None,
        description="完整数据库 URL（设置后忽略 POSTGRES_*，如 sqlite+aiosqlite:///./dev.db）",
    )

    DB_POOL_SIZE: int = Field(20, description="连接池基础大小")
    DB_MAX_OVERFLOW: int = Field(10, description="连接池溢出连接数")
    DB_POOL_RECYCLE: int = Field(3600, description="连接回收时间（秒）")
    DB_POOL_TIMEOUT: int = Field(30, description="获取连接超时（秒）")
    DB_ECHO: bool = Field(False, description="是否输出 SQL 语句")
    SLOW_QUERY_THRESHOLD_MS: int = Field(100, description="慢查询阈值（毫秒）")

    @property
    def DATABASE_URL(self) -> str:
        """构建异步数据库连接 URL（用于 SQLAlchemy）"""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    # ==================== 分页配置 ====================
    DEFAULT_PAGE_SIZE: int = Field(20, description="默认分页大小")
    MAX_PAGE_SIZE: int = Field(100, description="最大分页大小")

    # ==================== 业务常量 ====================
    READ_COMPLETION_THRESHOLD: float = Field(80.0, description="阅读完成阈值（阅读百分比）")
    VIDEO_COMPLETION_THRESHOLD: float = Field(90.0, description="视频观看完成阈值（百分比）")
    QR_CODE_DEFAULT_EXPIRE_SECONDS: int = Field(
        2592000,
        description="临时二维码默认有效期（秒，30 天）",
    )
    TOP_LOCATIONS_LIMIT: int = Field(10, description="用户统计中地区排行数量")


# 全局配置实例
settings = Settings()
