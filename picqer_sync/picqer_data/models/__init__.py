from .sync_run import SyncRun
from .sync_watermark import SyncWatermark
