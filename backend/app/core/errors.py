"""
异常到 HTTP 响应的映射，响应体统一为 {"detail": ..., "request_id": ...}
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import BusinessError, OrderNotFound

logger = logging.getLogger(__name__)


def _body(detail: str, request: Request) -> dict:
    body = {"detail": detail}
    rid: Optional[str] = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    return body


async def business_error_handler(request: Request, exc: BusinessError):
    """业务拒绝：订单不存在 404，其余 400，原因原样返回"""
    status_code = 404 if isinstance(exc, OrderNotFound) else 400
    logger.info("业务拒绝 %s %s: %s", request.method, request.url.path, exc.reason)
    return JSONResponse(status_code=status_code, content=_body(exc.reason, request))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(detail, request),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    body = _body(errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败", request)
    body["errors"] = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errs]
    return JSONResponse(status_code=422, content=body)


async def db_busy_handler(request: Request, exc: OperationalError):
    """行锁等待超时、连接中断等，调用方可重试"""
    logger.warning("数据库繁忙 %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content=_body("系统繁忙，请稍后重试", request))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "请求处理失败 %s %s request_id=%s",
        request.method, request.url.path, getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=500, content=_body("服务器内部错误", request))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BusinessError, business_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, db_busy_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
