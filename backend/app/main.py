"""
FastAPI主应用入口
"""
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import api_router
from app.core.config import settings
from app.core.database import Base, engine
from app.core.errors import register_exception_handlers
from app.core.health import check_db, check_outbox, check_redis
from app.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # 开发环境直接建表，生产环境由迁移脚本维护
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s 启动，通知发送方式: %s", settings.PROJECT_NAME,
                "Celery" if settings.NOTIFICATION_ASYNC else "请求内同步")

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="礼物 / 订阅订单履约：支付确认、礼物领取、发货计划、订阅消息",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """透传或生成 X-Request-ID，审计日志与错误响应都带上它"""
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


register_exception_handlers(app)
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME, "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
async def health_check():
    """各依赖连通状态；通知积压只影响 status，不影响接口可用"""
    db_ok, db_msg = await check_db()
    redis_ok, redis_msg = check_redis()
    outbox_ok, outbox_msg = await check_outbox() if db_ok else (False, "数据库不可用")
    return JSONResponse(
        content={
            "status": "healthy" if db_ok and redis_ok and outbox_ok else "degraded",
            "service": "gift-fulfillment-api",
            "dependencies": {
                "database": {"ok": db_ok, "message": db_msg},
                "redis": {"ok": redis_ok, "message": redis_msg},
                "notification_outbox": {"ok": outbox_ok, "message": outbox_msg},
            },
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
