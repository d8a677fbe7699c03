"""
Redis 短期数据：微信 access_token 缓存与刷新锁

多个 worker 共用一个 access_token，刷新时用 SET NX 抢锁，
没抢到的稍等后重读缓存，避免并发刷新把彼此的 token 顶掉。
Redis 不可用时所有操作降级为未命中，由调用方直接请求微信接口。
"""
import logging
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    """懒加载 Redis 客户端，初始化失败返回 None"""
    global _redis_client
    if _redis_client is None:
        try:
            import redis
            _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        except Exception as e:
            logger.warning("Redis 初始化失败，access_token 不做缓存: %s", e)
    return _redis_client


def ping() -> bool:
    r = _get_redis()
    if not r:
        return False
    return bool(r.ping())


def _token_key(appid: str) -> str:
    return f"{settings.CACHE_KEY_PREFIX}wechat:access_token:{appid}"


def _lock_key(appid: str) -> str:
    return f"{settings.CACHE_KEY_PREFIX}wechat:access_token_lock:{appid}"


def get_access_token(appid: str) -> Optional[str]:
    if not settings.CACHE_ENABLED:
        return None
    r = _get_redis()
    if not r:
        return None
    try:
        return r.get(_token_key(appid))
    except Exception as e:
        logger.debug("读取 access_token 缓存失败 appid=%s: %s", appid, e)
        return None


def store_access_token(appid: str, token: str, ttl: int) -> bool:
    if not settings.CACHE_ENABLED:
        return False
    r = _get_redis()
    if not r:
        return False
    try:
        r.setex(_token_key(appid), ttl, token)
        return True
    except Exception as e:
        logger.debug("写入 access_token 缓存失败 appid=%s: %s", appid, e)
        return False


def invalidate_access_token(appid: str) -> None:
    """微信返回 token 失效时调用"""
    r = _get_redis()
    if not r:
        return
    try:
        r.delete(_token_key(appid))
    except Exception as e:
        logger.debug("删除 access_token 缓存失败 appid=%s: %s", appid, e)


def acquire_refresh_lock(appid: str, ttl: int = 10) -> bool:
    """抢刷新锁；Redis 不可用时视为抢到，各自刷新"""
    r = _get_redis()
    if not r or not settings.CACHE_ENABLED:
        return True
    try:
        return bool(r.set(_lock_key(appid), "1", nx=True, ex=ttl))
    except Exception as e:
        logger.debug("获取 access_token 刷新锁失败 appid=%s: %s", appid, e)
        return True


def release_refresh_lock(appid: str) -> None:
    r = _get_redis()
    if not r:
        return
    try:
        r.delete(_lock_key(appid))
    except Exception as e:
        logger.debug("释放 access_token 刷新锁失败 appid=%s: %s", appid, e)
