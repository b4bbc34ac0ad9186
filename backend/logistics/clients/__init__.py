"""External API clients."""

from logistics.clients.dropbox import DropboxClient
from logistics.clients.kakaowork import KakaoWorkClient

__all__ = [
    "DropboxClient",
    "KakaoWorkClient",
]
