from picqer_api.config.serializable import Serializable


class Sync(Serializable):
    # Records written per local transaction.
    batch_size: int = 50
    max_workers: int = 6
