"""KakaoWork bot client for file-ready notifications."""

import logging
from typing import Any

import httpx
import orjson

from logistics.models import NotificationType
from logistics_core.errors import CollaboratorError

logger = logging.getLogger(__name__)


def build_invoice_message(
    conversation_id: str,
    title: str,
    record_count: int,
    file_url: str,
) -> dict[str, Any]:
    """Block Kit payload for a file-ready notification."""
    return {
        "conversation_id": conversation_id,
        "text": title,
        "blocks": [
            {"type": "header", "text": title, "style": "blue"},
            {"type": "text", "text": "아래 링크에서 파일을 다운로드하세요!", "markdown": True},
            {
                "type": "button",
                "text": "파일 다운로드",
                "style": "primary",
                "action_type": "open_system_browser",
                "value": file_url,
            },
            {"type": "divider"},
            {
                "type": "description",
                "term": "송장 개수",
                "content": {"type": "text", "text": f"{record_count}건", "markdown": False},
                "accent": True,
            },
            {"type": "divider"},
        ],
    }


class KakaoWorkClient:
    """KakaoWork Web API client."""

    BASE_URL = "https://api.kakaowork.com"

    def __init__(
        self,
        app_key: str = "",
        chatrooms: dict[str, str] | None = None,
        title_suffix: str = "운송장",
    ):
        self.app_key = app_key
        self.chatrooms = dict(chatrooms or {})
        self.title_suffix = title_suffix
        self._client: httpx.AsyncClient | None = None

        for notification_type in NotificationType:
            if notification_type.value not in self.chatrooms:
                logger.debug(f"KakaoWork chat room not configured for {notification_type.value}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={
                    "Authorization": f"Bearer {self.app_key}",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, endpoint: str, payload: dict[str, Any] | None = None) -> Any:
        client = await self._get_client()
        content = orjson.dumps(payload) if payload is not None else None
        response = await client.request(method, endpoint, content=content)
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict) and data.get("success") is False:
            error = data.get("error", {})
            raise CollaboratorError(
                "kakaowork", f"{error.get('code', 'error')}: {error.get('message', '')}"
            )
        return data

    def title_for(self, notification_type: NotificationType, batch_label: str) -> str:
        return f"{batch_label} - {notification_type.display_name} {self.title_suffix} 수집 완료"

    async def send_invoice_notification(
        self,
        notification_type: str,
        batch_label: str,
        batch_id: str,
        record_count: int,
        file_url: str,
    ) -> bool:
        """Post a file-ready message to the chat room for ``notification_type``.

        Raises:
            CollaboratorError: Missing app key or chat room, or the API rejected the message.
        """
        if not self.app_key:
            raise CollaboratorError("kakaowork", "KakaoWork 앱 키가 설정되지 않았습니다")

        ntype = NotificationType.from_center(notification_type)
        chatroom_id = self.chatrooms.get(ntype.value)
        if not chatroom_id:
            raise CollaboratorError(
                "kakaowork", f"알림 타입 '{ntype.value}'에 해당하는 채팅방 ID가 설정되지 않았습니다"
            )

        title = self.title_for(ntype, batch_label)
        payload = build_invoice_message(chatroom_id, title, record_count, file_url)
        try:
            await self._request("POST", "/v1/messages.send", payload)
        except httpx.HTTPError as e:
            raise CollaboratorError("kakaowork", f"{ntype.value} 알림 전송 실패: {e}") from e

        logger.info(f"KakaoWork notification sent: {ntype.value} ({batch_id}, {record_count} rows)")
        return True

    async def test_connection(self) -> bool:
        """Check the app key. Never raises."""
        if not self.app_key:
            logger.warning("KakaoWork app key not configured")
            return False
        try:
            await self._request("GET", "/v1/users.me")
            return True
        except (httpx.HTTPError, CollaboratorError) as e:
            logger.warning(f"KakaoWork connection test failed: {e}")
            return False
