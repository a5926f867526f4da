from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class PinProxySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Node the add requests are forwarded to
    IPFS_API_URL: str = "http://127.0.0.1:5001"
    IPFS_AUTH_USERNAME: Optional[str] = None
    IPFS_AUTH_PASSWORD: Optional[str] = None
    # Pin bookkeeping API
    PIN_API_URL: Optional[str] = None
    PIN_API_KEY: Optional[str] = None  # used when the caller sends no key of its own
    PIN_WORKER_TOKEN: Optional[str] = None
    PROXY_TIMEOUT_S: Optional[float] = None
