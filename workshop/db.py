from fastapi import HTTPException, Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from workshop.logging import logger


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    # sqlite 默认不执行外键（ondelete="SET NULL" 也不会生效）
    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # FastAPI 的同步路由跑在线程池里，sqlite 连接要允许跨线程
        connect_args = {"check_same_thread": False}
    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        enable_sqlite_foreign_keys(engine)
    return engine


def create_db_and_tables(engine: Engine) -> None:
    # 确保表都注册到 metadata 上
    from workshop import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session(request: Request):
    session = Session(request.app.state.engine)
    try:
        yield session
    except HTTPException:
        # 业务/鉴权错误：直接抛出（需要回滚的地方 service 自己已经回滚）
        raise
    except Exception as e:
        # 其他异常：更像程序错误/DB错误，回滚
        session.rollback()
        logger.warning("session rollback: %s: %s", type(e).__name__, e)
        raise
    finally:
        session.close()
