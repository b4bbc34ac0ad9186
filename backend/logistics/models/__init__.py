"""Data models."""

from logistics.models.common_code import CommonCode
from logistics.models.notification import NotificationType

__all__ = [
    "CommonCode",
    "NotificationType",
]
