from picqer_api.config.serializable import Serializable


class Django(Serializable):
    _required = ("secret_key",)

    secret_key: str = ""
    debug: bool = False
    db_engine: str = "django.db.backends.sqlite3"
    db_name: str = "picqer_sync.sqlite3"
    db_host: str = ""
    db_port: str = ""
    db_user: str = ""
    db_password: str = ""
