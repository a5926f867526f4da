import pytest

from pinner.pinproxy import PinProxySettings, make_proxy_from_env
from pinner.uploader.adapters import NodeUploader, PinataUploader, S3Uploader
from pinner.uploader.config import UploaderSettings, make_uploader_from_env
from pinner.uploader.service import MultiUploader


def settings(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return UploaderSettings(_env_file=None)


def test_single_backend_returns_the_adapter(monkeypatch):
    cfg = settings(monkeypatch, UPLOADER_BACKENDS="node", NODE_API_URL="http://127.0.0.1:5001", NODE_API_KEY="k")
    up = make_uploader_from_env(cfg)
    assert isinstance(up, NodeUploader)
    assert up.id == "127.0.0.1:5001"
    assert up.client.headers["X-API-Key"] == "k"


def test_several_backends_are_wrapped(monkeypatch):
    cfg = settings(
        monkeypatch,
        UPLOADER_BACKENDS="node, pinning, s3",
        NODE_API_URL="http://127.0.0.1:5001",
        NODE_ID="local",
        PINATA_JWT="jwt",
        S3_ENDPOINT_URL="https://s3.filebase.com",
        S3_BUCKET="bucket",
        S3_ACCESS_KEY_ID="AKIA",
        S3_SECRET_ACCESS_KEY="secret",
        S3_VENDOR="Filebase",
    )
    up = make_uploader_from_env(cfg)
    assert isinstance(up, MultiUploader)
    assert [type(u) for u in up.uploaders] == [NodeUploader, PinataUploader, S3Uploader]
    assert [u.id for u in up.uploaders] == ["local", "gateway.pinata.cloud", "s3.filebase.com"]


def test_filesystem_flag_reaches_adapters(monkeypatch):
    cfg = settings(monkeypatch, NODE_API_URL="http://node:5001", UPLOADER_ALLOW_FILESYSTEM="false")
    assert make_uploader_from_env(cfg).filesystem is False


@pytest.mark.parametrize(
    "env",
    [
        {"UPLOADER_BACKENDS": "node"},
        {"UPLOADER_BACKENDS": "pinning"},
        {"UPLOADER_BACKENDS": "s3", "S3_ENDPOINT_URL": "https://s3.example.com"},
        {"UPLOADER_BACKENDS": "ftp"},
        {"UPLOADER_BACKENDS": " , "},
    ],
)
def test_incomplete_configuration_fails_fast(monkeypatch, env):
    for key in ("NODE_API_URL", "PINATA_JWT", "S3_BUCKET"):
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(RuntimeError):
        make_uploader_from_env(settings(monkeypatch, **env))


def test_proxy_from_env(monkeypatch):
    monkeypatch.setenv("IPFS_API_URL", "http://node:5001/")
    monkeypatch.setenv("IPFS_AUTH_USERNAME", "admin")
    monkeypatch.setenv("PIN_API_URL", "https://pins.example.com/api/pin")
    monkeypatch.setenv("PIN_WORKER_TOKEN", "w")
    proxy = make_proxy_from_env(PinProxySettings(_env_file=None))
    assert proxy.node_url == "http://node:5001"
    assert proxy.registrar is not None and proxy.registrar.worker_token == "w"
