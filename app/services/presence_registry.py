"""
app.services.presence_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观众在线登记表 —— 记录「谁正在看哪个直播流」的唯一内存数据源。

每个直播流（stream key）对应一个 ``Room``，保存成员会话 ID 集合、
峰值在线人数和首位观众进入时间。所有读写都经过同一把锁，
保证并发 join / leave 时「修改 + 读取人数」是原子的。

不做任何 I/O，广播和持久化由上层 ``SessionLifecycleHandler`` 负责。
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NamedTuple

from app.core.logging import get_logger
from app.schemas.live_interactions import ViewerStats

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RoomCounts(NamedTuple):
    """一次 join / leave 之后的房间人数。"""

    current: int
    peak: int


class RoomPresence(NamedTuple):
    """``leave_all`` 中受影响的单个房间。"""

    stream_key: str
    current: int
    peak: int


@dataclass
class Room:
    """单个直播流的在线状态。

    Attributes:
        members: 当前在线的会话 ID 集合。
        peak: 峰值在线人数，只增不减。
        start_time: 首位观众进入时间（毫秒时间戳）。
    """

    start_time: int
    members: set[str] = field(default_factory=set)
    peak: int = 0

    @property
    def current(self) -> int:
        return len(self.members)

    def counts(self) -> RoomCounts:
        return RoomCounts(current=self.current, peak=self.peak)


class PresenceRegistry:
    """观众在线登记表。

    Args:
        retain_empty_rooms: 房间清空后是否保留峰值与开播时间。
            默认 ``True``：房间以 0 人状态保留，下一位观众进入时峰值延续；
            为 ``False`` 时最后一位观众离开即删除整个房间条目。
        clock: 毫秒时间戳来源，测试中可替换。
    """

    def __init__(self, retain_empty_rooms: bool = True, clock: Callable[[], int] = _now_ms) -> None:
        self.retain_empty_rooms = retain_empty_rooms
        self._clock = clock
        self._rooms: dict[str, Room] = {}
        self._lock = threading.Lock()

    def join(self, stream_key: str, session_id: str) -> RoomCounts:
        """把会话加入房间（幂等），返回更新后的人数。"""
        with self._lock:
            room = self._rooms.get(stream_key)
            if room is None:
                room = Room(start_time=self._clock())
                self._rooms[stream_key] = room
                logger.debug("房间已创建 | stream=%s", stream_key)
            room.members.add(session_id)
            room.peak = max(room.peak, room.current)
            return room.counts()

    def leave(self, stream_key: str, session_id: str) -> RoomCounts:
        """把会话移出房间，返回更新后的人数。

        会话不在房间内时不报错（显式 leave 与断线清理可能各执行一次）。
        房间清空后返回 ``(0, 最后峰值)``；从未出现过的房间返回 ``(0, 0)``。
        """
        with self._lock:
            return self._leave_locked(stream_key, session_id)

    def leave_all(self, session_id: str) -> list[RoomPresence]:
        """把会话移出其所在的全部房间（断线清理用）。

        Returns:
            恰好是该会话之前所在的房间，每个房间附带离开后的人数。
        """
        with self._lock:
            joined = [key for key, room in self._rooms.items() if session_id in room.members]
            affected: list[RoomPresence] = []
            for stream_key in joined:
                counts = self._leave_locked(stream_key, session_id)
                affected.append(RoomPresence(stream_key, counts.current, counts.peak))
            return affected

    def stats_for(self, stream_key: str) -> ViewerStats:
        """返回房间统计快照；房间不存在时返回全零默认值。"""
        with self._lock:
            room = self._rooms.get(stream_key)
            return self._snapshot(room)

    def all_stats(self) -> dict[str, ViewerStats]:
        """返回所有房间的统计快照。"""
        with self._lock:
            return {key: self._snapshot(room) for key, room in self._rooms.items()}

    def _leave_locked(self, stream_key: str, session_id: str) -> RoomCounts:
        room = self._rooms.get(stream_key)
        if room is None:
            return RoomCounts(current=0, peak=0)

        room.members.discard(session_id)
        counts = room.counts()
        if counts.current == 0 and not self.retain_empty_rooms:
            del self._rooms[stream_key]
            logger.debug("房间已清空并移除 | stream=%s | peak=%d", stream_key, counts.peak)
        return counts

    @staticmethod
    def _snapshot(room: Room | None) -> ViewerStats:
        if room is None:
            return ViewerStats()
        return ViewerStats(viewers=room.current, peak_viewers=room.peak, start_time=room.start_time)
