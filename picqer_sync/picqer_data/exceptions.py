class SyncError(Exception):
    """Base class for entity synchronization errors."""


class SchemaError(SyncError):
    pass


class RecordMappingError(SyncError):
    def __init__(self, entity_type: str, message: str) -> None:
        super().__init__(f"[{entity_type}] {message}")
        self.entity_type = entity_type


class UpsertError(SyncError):
    def __init__(self, table_name: str, natural_key: str, cause: Exception) -> None:
        super().__init__(f"Failed to write {table_name} row {natural_key!r}: {cause}")
        self.table_name = table_name
        self.natural_key = natural_key


class UnknownEntityType(SyncError):
    def __init__(self, entity_type: str) -> None:
        super().__init__(f"Unknown entity type: {entity_type}")
        self.entity_type = entity_type


class InvalidRunId(SyncError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Invalid sync run id: {run_id!r}")
        self.run_id = run_id


class InvalidRunTransition(SyncError):
    def __init__(self, run_id: str, target_status: str) -> None:
        super().__init__(
            f"Sync run {run_id} is no longer in progress; cannot mark it {target_status}"
        )
        self.run_id = run_id
        self.target_status = target_status
