from django.db import models

from picqer_api.utils import EPOCH_ZERO


class SyncWatermark(models.Model):
    entity_type = models.CharField(max_length=32, unique=True)
    last_sync_at = models.DateTimeField(default=EPOCH_ZERO)
    total_available = models.BigIntegerField(null=True)
    total_synced = models.BigIntegerField(null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Sync Watermark"

    def __str__(self) -> str:
        return f"{self.entity_type} @ {self.last_sync_at.isoformat()}"
