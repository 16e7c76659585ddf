from django.apps import AppConfig


class PicqerDataConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "picqer_data"
