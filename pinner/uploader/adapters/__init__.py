from .node_rpc import NodeUploader
from .object_store import VENDOR_PROFILES, S3Uploader
from .pinning import PinataUploader

__all__ = ["NodeUploader", "PinataUploader", "S3Uploader", "VENDOR_PROFILES"]
