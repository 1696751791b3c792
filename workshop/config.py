from typing import Literal

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 必填：签名密钥 + 数据库连接串（缺了启动直接失败）
    secret_key: str
    database_url: str

    access_token_expire_minutes: int = 60 * 24
    jwt_algorithm: str = "HS256"

    # pbkdf2_sha256 的迭代次数，越大越慢（防离线爆破）
    password_hash_rounds: int = 29000

    environment: Literal["development", "test", "production"] = "development"
    # open: 注册时可以自选角色；bootstrap: 只有第一个注册的用户可以自选
    registration_mode: Literal["open", "bootstrap"] = "open"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
