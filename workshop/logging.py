import json
import logging
import uuid

from fastapi import Request

logger = logging.getLogger("workshop")


def configure_logging(level: str = "INFO") -> None:
    # 重复 create_app()（比如测试里）时不要叠加 handler
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level.upper())


async def request_id_middleware(request: Request, call_next):
    request.state.request_id = uuid.uuid4().hex
    response = await call_next(request)
    response.headers["X-Request-Id"] = request.state.request_id
    return response


def log_event(event: str, level: int = logging.INFO, **kwargs) -> None:
    payload = {"event": event, **kwargs}
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
