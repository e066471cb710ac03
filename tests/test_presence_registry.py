"""
tests.test_presence_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

PresenceRegistry 单元测试：人数不变式、幂等 join、leave_all 精确性、空房间保留与回收。
"""
from __future__ import annotations

import random
import threading

from app.services.presence_registry import PresenceRegistry, RoomPresence


class TestJoinLeave:
    """测试 join / leave 的基本语义。"""

    def test_join_creates_room_lazily(self) -> None:
        registry = PresenceRegistry(clock=lambda: 1234)

        counts = registry.join("stream", "a")

        assert counts == (1, 1)
        stats = registry.stats_for("stream")
        assert stats.viewers == 1
        assert stats.peak_viewers == 1
        assert stats.start_time == 1234

    def test_join_is_idempotent(self) -> None:
        """同一会话重复 join 不应重复计数。"""
        registry = PresenceRegistry()

        registry.join("stream", "a")
        counts = registry.join("stream", "a")

        assert counts.current == 1
        assert counts.peak == 1

    def test_leave_unknown_session_is_noop(self) -> None:
        registry = PresenceRegistry()
        registry.join("stream", "a")

        counts = registry.leave("stream", "ghost")

        assert counts == (1, 1)

    def test_leave_unknown_room_returns_zeros(self) -> None:
        registry = PresenceRegistry()

        assert registry.leave("nowhere", "a") == (0, 0)

    def test_last_leave_keeps_room_and_reports_last_peak(self) -> None:
        registry = PresenceRegistry()
        registry.join("stream", "a")
        registry.join("stream", "b")
        registry.leave("stream", "a")

        counts = registry.leave("stream", "b")

        assert counts == (0, 2)
        stats = registry.all_stats()["stream"]
        assert stats.viewers == 0
        assert stats.peak_viewers == 2
        assert registry.leave("stream", "b") == (0, 2)

    def test_last_leave_removes_room_when_not_retained(self) -> None:
        registry = PresenceRegistry(retain_empty_rooms=False)
        registry.join("stream", "a")
        registry.join("stream", "b")
        registry.leave("stream", "a")

        counts = registry.leave("stream", "b")

        assert counts == (0, 2)
        assert "stream" not in registry.all_stats()
        # 再次 leave 已删除的房间不报错
        assert registry.leave("stream", "b") == (0, 0)

    def test_stats_for_unknown_room_is_zeroed(self) -> None:
        stats = PresenceRegistry().stats_for("missing")

        assert stats.viewers == 0
        assert stats.peak_viewers == 0
        assert stats.start_time is None


class TestScenarios:
    """测试典型的多观众进出场景。"""

    def test_peak_is_high_water_mark(self) -> None:
        """A、B 进入 → B 离开 → C 进入 → A 断线。"""
        registry = PresenceRegistry()

        assert registry.join("stream", "A") == (1, 1)
        assert registry.join("stream", "B") == (2, 2)
        assert registry.leave("stream", "B") == (1, 2)
        assert registry.join("stream", "C") == (2, 2)

        affected = registry.leave_all("A")

        assert affected == [RoomPresence("stream", 1, 2)]
        assert registry.stats_for("stream").viewers == 1

    def test_peak_survives_room_emptying_by_default(self) -> None:
        """A、B 进入 → 都离开 → C 进入，峰值仍为 2。"""
        registry = PresenceRegistry()
        registry.join("stream", "a")
        registry.join("stream", "b")
        registry.leave_all("a")
        registry.leave_all("b")

        assert registry.join("stream", "c") == (1, 2)

    def test_peak_resets_when_empty_rooms_are_discarded(self) -> None:
        registry = PresenceRegistry(retain_empty_rooms=False)
        registry.join("stream", "a")
        registry.join("stream", "b")
        registry.leave_all("a")
        registry.leave_all("b")

        assert registry.join("stream", "c") == (1, 1)

    def test_empty_room_keeps_start_time(self) -> None:
        ticks = iter([100, 200])
        registry = PresenceRegistry(clock=lambda: next(ticks))
        registry.join("stream", "a")
        registry.join("stream", "b")
        registry.leave("stream", "a")

        assert registry.leave("stream", "b") == (0, 2)
        assert registry.stats_for("stream").start_time == 100

        assert registry.join("stream", "c") == (1, 2)
        assert registry.stats_for("stream").start_time == 100


class TestLeaveAll:
    """测试断线清理。"""

    def test_leave_all_returns_exactly_joined_rooms(self) -> None:
        registry = PresenceRegistry()
        registry.join("s1", "a")
        registry.join("s2", "a")
        registry.join("s2", "b")
        registry.join("s3", "b")

        affected = registry.leave_all("a")

        assert sorted(affected) == [RoomPresence("s1", 0, 1), RoomPresence("s2", 1, 2)]
        assert registry.leave_all("a") == []
        assert registry.stats_for("s2").viewers == 1
        assert registry.stats_for("s3").viewers == 1

    def test_leave_all_for_unknown_session(self) -> None:
        registry = PresenceRegistry()
        registry.join("s1", "a")

        assert registry.leave_all("ghost") == []
        assert registry.stats_for("s1").viewers == 1


class TestInvariants:
    """随机操作序列下的计数不变式。"""

    def test_random_sequences_keep_invariants(self) -> None:
        rng = random.Random(42)
        registry = PresenceRegistry()
        sessions = [f"sess-{i}" for i in range(8)]
        keys = ["s1", "s2", "s3"]
        members: dict[str, set[str]] = {key: set() for key in keys}
        last_peak: dict[str, int] = {key: 0 for key in keys}

        for _ in range(2000):
            op = rng.choice(["join", "leave", "leave_all"])
            session_id = rng.choice(sessions)
            if op == "leave_all":
                affected = registry.leave_all(session_id)
                expected = {key for key, m in members.items() if session_id in m}
                assert {room.stream_key for room in affected} == expected
                for key in expected:
                    members[key].discard(session_id)
                touched = expected
            else:
                key = rng.choice(keys)
                if op == "join":
                    counts = registry.join(key, session_id)
                    members[key].add(session_id)
                else:
                    counts = registry.leave(key, session_id)
                    members[key].discard(session_id)
                assert counts.current == len(members[key])
                assert counts.peak >= counts.current
                touched = {key}

            for key in touched:
                stats = registry.stats_for(key)
                assert stats.viewers == len(members[key])
                assert stats.peak_viewers >= stats.viewers
                if members[key]:
                    # 峰值在房间存活期间单调不减
                    assert stats.peak_viewers >= last_peak[key]
                    last_peak[key] = stats.peak_viewers
                else:
                    last_peak[key] = 0

    def test_concurrent_joins_from_threads_are_counted_once_each(self) -> None:
        registry = PresenceRegistry()

        def worker(offset: int) -> None:
            for i in range(200):
                registry.join("stream", f"{offset}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = registry.stats_for("stream")
        assert stats.viewers == 800
        assert stats.peak_viewers == 800
