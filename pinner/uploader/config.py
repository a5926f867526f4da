from __future__ import annotations

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .adapters.node_rpc import NodeUploader
from .adapters.object_store import S3Uploader
from .adapters.pinning import DEFAULT_API_URL, PinataUploader
from .ports import UploaderPort
from .service import MultiUploader


class UploaderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    UPLOADER_BACKENDS: str = Field(default="node")  # comma list of "node" | "pinning" | "s3"
    UPLOADER_ALLOW_FILESYSTEM: bool = True
    UPLOADER_TIMEOUT_S: Optional[float] = 60.0
    # Node RPC
    NODE_API_URL: Optional[str] = None
    NODE_ID: Optional[str] = None
    NODE_AUTH_USERNAME: Optional[str] = None
    NODE_AUTH_PASSWORD: Optional[str] = None
    NODE_API_KEY: Optional[str] = None
    # Pinning service
    PINATA_JWT: Optional[str] = None
    PINATA_GATEWAY: Optional[str] = None
    PINATA_API_URL: str = DEFAULT_API_URL
    PINNING_ID: Optional[str] = None
    # Object store
    S3_ENDPOINT_URL: Optional[str] = None
    S3_REGION: Optional[str] = None
    S3_ACCESS_KEY_ID: Optional[str] = None
    S3_SECRET_ACCESS_KEY: Optional[str] = None
    S3_BUCKET: Optional[str] = None
    S3_VENDOR: str = "filebase"
    S3_ID: Optional[str] = None
    S3_FORCE_PATH_STYLE: bool = False

    def backends(self) -> List[str]:
        return [b.strip().lower() for b in self.UPLOADER_BACKENDS.split(",") if b.strip()]


def _node(cfg: UploaderSettings) -> NodeUploader:
    if not cfg.NODE_API_URL:
        raise RuntimeError("NODE_API_URL is required for the node backend")
    auth = None
    if cfg.NODE_AUTH_USERNAME:
        auth = (cfg.NODE_AUTH_USERNAME, cfg.NODE_AUTH_PASSWORD or "")
    headers = {"X-API-Key": cfg.NODE_API_KEY} if cfg.NODE_API_KEY else None
    return NodeUploader(
        cfg.NODE_API_URL,
        id=cfg.NODE_ID,
        auth=auth,
        headers=headers,
        filesystem=cfg.UPLOADER_ALLOW_FILESYSTEM,
        timeout=cfg.UPLOADER_TIMEOUT_S,
    )


def _pinning(cfg: UploaderSettings) -> PinataUploader:
    if not cfg.PINATA_JWT:
        raise RuntimeError("PINATA_JWT is required for the pinning backend")
    return PinataUploader(
        cfg.PINATA_JWT,
        gateway=cfg.PINATA_GATEWAY,
        api_url=cfg.PINATA_API_URL,
        id=cfg.PINNING_ID,
        filesystem=cfg.UPLOADER_ALLOW_FILESYSTEM,
        timeout=cfg.UPLOADER_TIMEOUT_S,
    )


def _s3(cfg: UploaderSettings) -> S3Uploader:
    if not cfg.S3_ENDPOINT_URL or not cfg.S3_BUCKET:
        raise RuntimeError("S3_ENDPOINT_URL and S3_BUCKET are required for the s3 backend")
    return S3Uploader(
        cfg.S3_ENDPOINT_URL,
        cfg.S3_BUCKET,
        access_key_id=cfg.S3_ACCESS_KEY_ID,
        secret_access_key=cfg.S3_SECRET_ACCESS_KEY,
        region=cfg.S3_REGION,
        vendor=cfg.S3_VENDOR.lower(),
        id=cfg.S3_ID,
        force_path_style=cfg.S3_FORCE_PATH_STYLE,
        filesystem=cfg.UPLOADER_ALLOW_FILESYSTEM,
        timeout=cfg.UPLOADER_TIMEOUT_S,
    )


_BUILDERS = {"node": _node, "pinning": _pinning, "s3": _s3}


def make_uploader_from_env(cfg: Optional[UploaderSettings] = None) -> UploaderPort:
    cfg = cfg or UploaderSettings()
    names = cfg.backends()
    if not names:
        raise RuntimeError("UPLOADER_BACKENDS is empty")
    uploaders = []
    for name in names:
        build = _BUILDERS.get(name)
        if build is None:
            raise RuntimeError(f"Unknown uploader backend: {name}")
        uploaders.append(build(cfg))
    if len(uploaders) == 1:
        return uploaders[0]
    return MultiUploader(uploaders)
