from .contracts import *
from .errors import *
from .ports import UploaderPort
from .adapters import NodeUploader, PinataUploader, S3Uploader
from .service import MultiUploader, upload
from .config import UploaderSettings, make_uploader_from_env
