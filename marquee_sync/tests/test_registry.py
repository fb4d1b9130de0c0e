"""Tests for the connection registry."""

from marquee_sync.registry import ConnectionRegistry, PlayerLayout
from marquee_sync.tests.conftest import MockWebSocket


class TestRegisterPlayer:
    def test_default_layout(self):
        registry = ConnectionRegistry()
        entry, superseded = registry.register_player("a", MockWebSocket(), connected_at=1)
        assert superseded is None
        assert entry.layout == PlayerLayout(screen_count=2, screen_index=1, offset_px=0)
        assert entry.reported_width is None

    def test_initial_layout_and_width(self):
        registry = ConnectionRegistry()
        layout = PlayerLayout(screen_count=3, screen_index=2, offset_px=1920)
        entry, _ = registry.register_player("a", MockWebSocket(), layout=layout, reported_width=1280)
        assert entry.layout is layout
        assert entry.reported_width == 1280

    def test_duplicate_id_returns_superseded_entry(self):
        registry = ConnectionRegistry()
        old_ws, new_ws = MockWebSocket(), MockWebSocket()
        registry.register_player("a", old_ws, connected_at=1)
        entry, superseded = registry.register_player("a", new_ws, connected_at=2)

        assert superseded is not None
        assert superseded.websocket is old_ws
        assert registry.player_count == 1
        assert registry.get_player("a") is entry
        assert entry.websocket is new_ws

    def test_reconnect_moves_player_to_end_of_order(self):
        registry = ConnectionRegistry()
        registry.register_player("a", MockWebSocket(), connected_at=1)
        registry.register_player("b", MockWebSocket(), connected_at=2)
        registry.register_player("a", MockWebSocket(), connected_at=3)
        assert [p["playerId"] for p in registry.snapshot()] == ["b", "a"]


class TestUnregisterPlayer:
    def test_removes_own_entry(self):
        registry = ConnectionRegistry()
        ws = MockWebSocket()
        registry.register_player("a", ws)
        assert registry.unregister_player("a", ws) is True
        assert registry.player_count == 0
        assert registry.player_disconnects == 1

    def test_superseded_connection_does_not_remove_new_entry(self):
        registry = ConnectionRegistry()
        old_ws, new_ws = MockWebSocket(), MockWebSocket()
        registry.register_player("a", old_ws)
        registry.register_player("a", new_ws)

        assert registry.unregister_player("a", old_ws) is False
        assert registry.get_player("a").websocket is new_ws

    def test_unknown_id(self):
        registry = ConnectionRegistry()
        assert registry.unregister_player("ghost", MockWebSocket()) is False


class TestSnapshot:
    def test_sorted_by_connected_at(self):
        registry = ConnectionRegistry()
        registry.register_player("late", MockWebSocket(), connected_at=300)
        registry.register_player("early", MockWebSocket(), connected_at=100)
        registry.register_player("middle", MockWebSocket(), connected_at=200)

        snapshot = registry.snapshot()
        assert [p["playerId"] for p in snapshot] == ["early", "middle", "late"]
        assert [p["connectedAt"] for p in snapshot] == [100, 200, 300]

    def test_equal_connected_at_keeps_registration_order(self):
        registry = ConnectionRegistry()
        for player_id in ("x", "y", "z"):
            registry.register_player(player_id, MockWebSocket(), connected_at=500)
        assert [p["playerId"] for p in registry.snapshot()] == ["x", "y", "z"]

    def test_contains_only_live_players(self):
        registry = ConnectionRegistry()
        ws_a = MockWebSocket()
        registry.register_player("a", ws_a, connected_at=1)
        registry.register_player("b", MockWebSocket(), connected_at=2)
        registry.unregister_player("a", ws_a)
        assert [p["playerId"] for p in registry.snapshot()] == ["b"]

    def test_wire_shape(self):
        registry = ConnectionRegistry()
        registry.register_player("a", MockWebSocket(), reported_width=1920, connected_at=42)
        assert registry.snapshot() == [
            {
                "playerId": "a",
                "layout": {"screenCount": 2, "screenIndex": 1, "offsetPx": 0},
                "reportedWidth": 1920,
                "connectedAt": 42,
            }
        ]


class TestControllers:
    def test_register_and_unregister(self):
        registry = ConnectionRegistry()
        ws = MockWebSocket()
        registry.register_controller(ws)
        assert registry.controller_count == 1
        assert registry.controllers() == [ws]

        assert registry.unregister_controller(ws) is True
        assert registry.controller_count == 0
        assert registry.unregister_controller(ws) is False

    def test_controller_removal_leaves_players_alone(self):
        registry = ConnectionRegistry()
        controller = MockWebSocket()
        registry.register_controller(controller)
        registry.register_player("a", MockWebSocket(), connected_at=1)
        before = registry.snapshot()

        registry.unregister_controller(controller)
        assert registry.snapshot() == before

    def test_counters(self):
        registry = ConnectionRegistry()
        registry.register_controller(MockWebSocket())
        registry.register_player("a", MockWebSocket())
        registry.register_player("a", MockWebSocket())
        assert registry.player_connects == 2
        assert registry.controller_connects == 1
        assert registry.player_count == 1
