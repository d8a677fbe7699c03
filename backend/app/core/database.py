"""
数据库连接：异步引擎、会话工厂与 FastAPI 依赖
"""
from typing import AsyncGenerator, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

Base = declarative_base()


DATABASE_URL = settings.DATABASE_URL or "sqlite+aiosqlite:///./fulfillment.db"


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """pysqlite 默认不发 BEGIN，SAVEPOINT 不可用；改为由 SQLAlchemy 显式开启事务"""
    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _engine_kwargs() -> dict:
    kwargs = {"echo": settings.DATABASE_ECHO, "future": True}
    if not DATABASE_URL.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return kwargs


engine = create_async_engine(
    DATABASE_URL,
    **_engine_kwargs(),
)
if DATABASE_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个会话，请求结束自动关闭"""
    async with AsyncSessionLocal() as session:
        yield session


def create_async_engine_and_session_for_celery() -> Tuple[AsyncEngine, async_sessionmaker]:
    """Celery 任务内使用：每个任务在自己的 event loop 上创建 engine，用完 dispose。"""
    task_engine = create_async_engine(
        DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        future=True,
    )
    if DATABASE_URL.startswith("sqlite"):
        enable_sqlite_savepoints(task_engine)
    factory = async_sessionmaker(
        task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return task_engine, factory
