"""Notification types: one per shipment center plus sales input."""

from enum import Enum


class NotificationType(str, Enum):
    SALES_DATA = "SalesData"
    INTEGRATED = "Integrated"
    SEOUL_FROZEN = "SeoulFrozen"
    GYEONGGI_FROZEN = "GyeonggiFrozen"
    SEOUL_GONGSAN = "SeoulGongsan"
    GYEONGGI_GONGSAN = "GyeonggiGongsan"
    BUSAN_CHEONGGWA = "BusanCheonggwa"
    GAMCHEON_FROZEN = "GamcheonFrozen"
    CHECK = "Check"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def from_center(cls, center: str) -> "NotificationType":
        """Map a shipment center name to its type; unknown centers go to CHECK."""
        for member, name in _DISPLAY_NAMES.items():
            if name == center:
                return member
        try:
            return cls(center)
        except ValueError:
            return cls.CHECK


_DISPLAY_NAMES = {
    NotificationType.SALES_DATA: "판매입력",
    NotificationType.INTEGRATED: "통합송장",
    NotificationType.SEOUL_FROZEN: "서울냉동",
    NotificationType.GYEONGGI_FROZEN: "경기냉동",
    NotificationType.SEOUL_GONGSAN: "서울공산",
    NotificationType.GYEONGGI_GONGSAN: "경기공산",
    NotificationType.BUSAN_CHEONGGWA: "부산청과",
    NotificationType.GAMCHEON_FROZEN: "감천냉동",
    NotificationType.CHECK: "확인필요",
}
