from .django import Django
from .picqer import Picqer
from .sync import Sync

__all__ = ["Django", "Picqer", "Sync"]
