from django.db import models


class SyncRun(models.Model):
    class Status(models.TextChoices):
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    run_id = models.CharField(max_length=64, unique=True)
    entity_type = models.CharField(max_length=32, db_index=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.IN_PROGRESS
    )
    started_at = models.DateTimeField()
    ended_at = models.DateTimeField(null=True)
    items_synced = models.BigIntegerField(default=0)
    error_message = models.TextField(null=True)

    class Meta:
        verbose_name = "Sync Run"
        ordering = ["-started_at", "-id"]

    def __str__(self) -> str:
        return f"{self.run_id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status != self.Status.IN_PROGRESS
