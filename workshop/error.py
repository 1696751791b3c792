from typing import NoReturn

from fastapi import HTTPException


def abort(status_code: int, code: str, message: str) -> NoReturn:
    raise HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _auth_401(code: str, message: str) -> HTTPException:
    # ✅ 保留 WWW-Authenticate，符合 Bearer 规范
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def not_found(what: str, code: str = "NOT_FOUND") -> NoReturn:
    abort(404, code, f"{what} not found")


def conflict(code: str, message: str) -> NoReturn:
    abort(409, code, message)


def forbidden(code: str, message: str) -> NoReturn:
    abort(403, code, message)
