import json

import pytest

from connection_manager import ConnectionManager, phase_channel, room_channel


class FakeSocket:
    def __init__(self, broken=False):
        self.accepted = False
        self.sent = []
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


def test_channel_names_are_per_room():
    assert room_channel("ABC123") == "room-ABC123"
    assert phase_channel("ABC123") == "room-phase-ABC123"


async def test_subscription_is_released_on_scope_exit():
    manager = ConnectionManager()
    socket = FakeSocket()

    async with manager.subscribe(socket, "room-ABC123") as subscription:
        assert socket.accepted
        assert subscription.channel == "room-ABC123"
        assert manager.subscriber_count("room-ABC123") == 1

    assert manager.subscriber_count("room-ABC123") == 0
    assert "room-ABC123" not in manager.active_connections


async def test_subscription_is_released_when_listener_fails():
    manager = ConnectionManager()

    with pytest.raises(RuntimeError):
        async with manager.subscribe(FakeSocket(), "room-ABC123"):
            raise RuntimeError("listener crashed")

    assert manager.subscriber_count("room-ABC123") == 0


async def test_broadcast_reaches_only_the_channel():
    manager = ConnectionManager()
    phase_socket, roster_socket = FakeSocket(), FakeSocket()

    async with manager.subscribe(phase_socket, phase_channel("ABC123")):
        async with manager.subscribe(roster_socket, room_channel("ABC123")):
            await manager.broadcast(phase_channel("ABC123"), "results_ready", {"round_id": "r1"})

    assert phase_socket.sent == [
        {"type": "broadcast", "event": "results_ready", "payload": {"round_id": "r1"}}
    ]
    assert roster_socket.sent == []


async def test_broadcast_drops_dead_sockets():
    manager = ConnectionManager()
    alive, dead = FakeSocket(), FakeSocket(broken=True)

    async with manager.subscribe(alive, "room-ABC123"):
        async with manager.subscribe(dead, "room-ABC123"):
            await manager.broadcast("room-ABC123", "player_ready", {"user_id": "u1"})
            assert manager.subscriber_count("room-ABC123") == 1

    assert len(alive.sent) == 1


async def test_broadcast_to_empty_channel_is_a_no_op():
    await ConnectionManager().broadcast("room-NOBODY", "game_finished", {"battle_id": "b1"})
