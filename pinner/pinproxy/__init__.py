from .contracts import AddEntry, PinCandidate, PinRequest
from .errors import PinProxyError, PinRegistrationError, UpstreamAddError
from .extractor import PinExtractor, pin_stream, select_roots, wrap_requested
from .registrar import PinRegistrar
from .service import AddProxy
from .config import PinProxySettings


def make_proxy_from_env(cfg: PinProxySettings | None = None) -> AddProxy:
    cfg = cfg or PinProxySettings()
    registrar = None
    if cfg.PIN_API_URL:
        registrar = PinRegistrar(cfg.PIN_API_URL, worker_token=cfg.PIN_WORKER_TOKEN, timeout=cfg.PROXY_TIMEOUT_S)
    auth = None
    if cfg.IPFS_AUTH_USERNAME:
        auth = (cfg.IPFS_AUTH_USERNAME, cfg.IPFS_AUTH_PASSWORD or "")
    return AddProxy(
        cfg.IPFS_API_URL,
        registrar=registrar,
        auth=auth,
        default_api_key=cfg.PIN_API_KEY,
        timeout=cfg.PROXY_TIMEOUT_S,
    )
