"""End-to-end behaviour of the hub with a recording transport."""

import asyncio
import random

import pytest

from workhub.realtime.errors import InvariantViolation


@pytest.mark.asyncio
async def test_two_devices_produce_one_online_and_one_offline_update(harness) -> None:
    """U1 connects twice; closing device 2 is silent; closing device 1 announces offline."""
    harness.add_user("u1")
    await harness.connect("u1", "d1")
    await harness.connect("u1", "d2")
    assert harness.server.broadcasts("presence:update") == [{"identityId": "u1", "online": True}]

    await harness.hub.disconnect("d2")
    assert len(harness.server.broadcasts("presence:update")) == 1

    await harness.hub.disconnect("d1")
    assert harness.server.broadcasts("presence:update") == [
        {"identityId": "u1", "online": True},
        {"identityId": "u1", "online": False},
    ]


@pytest.mark.asyncio
async def test_members_receive_the_same_message_id_and_temp_id(harness) -> None:
    for user_id, sid in (("u1", "s1"), ("u2", "s2")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")

    await harness.hub.handle("message:send", "s1", {"channelId": "C", "content": "hello", "tempId": "abc123"})

    [to_u1] = harness.server.sent("message:new", to="s1")
    [to_u2] = harness.server.sent("message:new", to="s2")
    assert to_u1["id"] == to_u2["id"]
    assert to_u1["tempId"] == to_u2["tempId"] == "abc123"


@pytest.mark.asyncio
async def test_non_member_join_is_refused_and_send_not_persisted(harness) -> None:
    harness.add_user("u1")
    harness.add_user("u3")
    harness.membership.add("C", "u1")
    await harness.connect("u1", "s1")
    await harness.join("s1", "C")
    await harness.connect("u3", "s3")

    await harness.join("s3", "C")
    assert harness.server.sent("error", to="s3") == [{"message": "Not a member of this channel"}]
    assert harness.server.sent("channel:joined", to="s3") == []
    assert not harness.hub.registry.in_room("s3", "C")

    await harness.hub.handle("message:send", "s3", {"channelId": "C", "content": "sneaky"})
    assert len(harness.server.sent("error", to="s3")) == 2
    assert harness.messages.messages == {}

    await harness.hub.handle("message:send", "s1", {"channelId": "C", "content": "members only"})
    assert harness.server.sent("message:new", to="s3") == []


@pytest.mark.asyncio
async def test_idle_typer_disappears_after_six_seconds(harness) -> None:
    for user_id, sid in (("u1", "s1"), ("u2", "s2")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")

    await harness.hub.handle("typing:start", "s1", {"channelId": "C"})
    assert harness.server.sent("typing:update", to="s2") == [{"channelId": "C", "users": ["u1"]}]

    harness.clock.advance(6000)
    await harness.hub.handle("typing:start", "s2", {"channelId": "C"})

    assert harness.hub.typing.get_active_typers("C", excluding="u2") == []
    assert harness.server.sent("typing:update", to="s1")[-1] == {"channelId": "C", "users": ["u2"]}


@pytest.mark.asyncio
async def test_typing_start_twice_keeps_one_entry(harness) -> None:
    harness.add_user("u1")
    harness.membership.add("C", "u1")
    await harness.connect("u1", "s1")
    await harness.join("s1", "C")

    await harness.hub.handle("typing:start", "s1", "C")
    await harness.hub.handle("typing:start", "s1", "C")

    assert harness.hub.typing.get_active_typers("C") == ["u1"]


@pytest.mark.asyncio
async def test_typing_requires_a_joined_room(harness) -> None:
    harness.add_user("u1")
    await harness.connect("u1", "s1")

    await harness.hub.handle("typing:start", "s1", {"channelId": "C"})

    assert harness.server.sent("error", to="s1") == [{"message": "Not a member of this channel"}]
    assert harness.hub.typing.channels() == []


@pytest.mark.asyncio
async def test_last_disconnect_clears_typing_and_tells_the_room(harness) -> None:
    for user_id, sid in (("u1", "s1"), ("u2", "s2")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")
    await harness.hub.handle("typing:start", "s1", {"channelId": "C"})
    harness.server.clear()

    await harness.hub.disconnect("s1")

    assert harness.server.sent("typing:update", to="s2") == [{"channelId": "C", "users": []}]
    assert harness.hub.typing.channels() == []


@pytest.mark.asyncio
async def test_sweep_expires_stale_typers_without_a_read(harness) -> None:
    for user_id, sid in (("u1", "s1"), ("u2", "s2")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")
    await harness.hub.handle("typing:start", "s1", {"channelId": "C"})
    harness.server.clear()

    harness.clock.advance(5001)
    await harness.hub.sweep_typing()

    assert harness.server.sent("typing:update", to="s2") == [{"channelId": "C", "users": []}]


@pytest.mark.asyncio
async def test_membership_is_rechecked_on_every_join(harness) -> None:
    harness.add_user("u1")
    harness.membership.add("C", "u1")
    await harness.connect("u1", "s1")
    await harness.join("s1", "C")
    await harness.hub.handle("channel:leave", "s1", {"channelId": "C"})
    assert harness.server.sent("channel:left", to="s1") == [{"channelId": "C"}]

    harness.membership.remove("C", "u1")
    await harness.join("s1", "C")

    assert harness.server.sent("error", to="s1") == [{"message": "Not a member of this channel"}]
    assert not harness.hub.registry.in_room("s1", "C")


@pytest.mark.asyncio
async def test_denied_rejoin_takes_a_joined_connection_out_of_the_room(harness) -> None:
    """Given u2 already in C, when u2 loses membership and joins again, then u2 stops receiving C."""
    for user_id, sid in (("u1", "s1"), ("u2", "s2")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")
    harness.server.clear()

    harness.membership.remove("C", "u2")
    await harness.join("s2", "C")
    await harness.hub.handle("message:send", "s1", {"channelId": "C", "content": "members only"})

    assert harness.server.sent("error", to="s2") == [{"message": "Not a member of this channel"}]
    assert not harness.hub.registry.in_room("s2", "C")
    assert harness.server.sent("message:new", to="s2") == []
    assert len(harness.server.sent("message:new", to="s1")) == 1


@pytest.mark.asyncio
async def test_evicting_a_removed_member_covers_every_device_and_typing(harness) -> None:
    harness.add_user("u1")
    harness.add_user("u2")
    harness.membership.add("C", "u1", "u2")
    await harness.connect("u1", "s1")
    await harness.connect("u2", "s2")
    await harness.connect("u2", "s3")
    for sid in ("s1", "s2", "s3"):
        await harness.join(sid, "C")
    await harness.hub.handle("typing:start", "s2", {"channelId": "C"})
    harness.server.clear()

    harness.membership.remove("C", "u2")
    evicted = await harness.hub.evict_from_channel("u2", "C")

    assert evicted == 2
    assert harness.hub.registry.room_members("C") == ["s1"]
    for sid in ("s2", "s3"):
        assert harness.server.sent("channel:left", to=sid) == [{"channelId": "C"}]
    assert harness.hub.typing.get_active_typers("C") == []
    assert harness.server.sent("typing:update", to="s1") == [{"channelId": "C", "users": []}]

    await harness.hub.handle("message:send", "s1", {"channelId": "C", "content": "after removal"})
    assert harness.server.sent("message:new", to="s2") == []
    assert harness.server.sent("message:new", to="s3") == []


@pytest.mark.asyncio
async def test_connection_closed_during_membership_check_is_not_added(harness) -> None:
    """Given a disconnect while the membership lookup is pending, then the room stays empty."""
    harness.add_user("u1")
    harness.membership.add("C", "u1")
    await harness.connect("u1", "s1")

    release = asyncio.Event()
    original = harness.membership.is_member

    async def slow_is_member(channel_id, user_id):
        await release.wait()
        return await original(channel_id, user_id)

    harness.membership.is_member = slow_is_member
    join = asyncio.ensure_future(harness.join("s1", "C"))
    await asyncio.sleep(0)
    await harness.hub.disconnect("s1")
    release.set()
    await join

    assert harness.hub.registry.room_members("C") == []
    assert harness.server.sent("channel:joined", to="s1") == []


@pytest.mark.asyncio
async def test_unregistered_sid_is_disconnected(harness) -> None:
    await harness.hub.handle("message:send", "ghost", {"channelId": "C", "content": "boo"})

    assert harness.server.sent("error", to="ghost") == [{"message": "Connection is not registered"}]
    assert harness.server.disconnected == ["ghost"]


@pytest.mark.asyncio
async def test_duplicate_sid_on_connect_is_refused(harness) -> None:
    harness.add_user("u1")
    await harness.connect("u1", "s1")

    with pytest.raises(InvariantViolation):
        await harness.connect("u1", "s1")


@pytest.mark.asyncio
async def test_unknown_event_gets_an_error(harness) -> None:
    await harness.hub.handle("message:explode", "s1", {})
    assert harness.server.sent("error", to="s1") == [{"message": "Unknown event: message:explode"}]


@pytest.mark.asyncio
async def test_presence_updates_balance_over_random_sequences(harness) -> None:
    """online:true count equals online:false count plus one while still online."""
    rng = random.Random(7)
    for user_id in ("u1", "u2"):
        harness.add_user(user_id)
    live = []
    for step in range(200):
        if live and rng.random() < 0.45:
            sid = live.pop(rng.randrange(len(live)))
            await harness.hub.disconnect(sid)
        else:
            sid = f"s{step}"
            await harness.connect(rng.choice(["u1", "u2"]), sid)
            live.append(sid)

    updates = harness.server.broadcasts("presence:update")
    for user_id in ("u1", "u2"):
        ups = sum(1 for u in updates if u["identityId"] == user_id and u["online"])
        downs = sum(1 for u in updates if u["identityId"] == user_id and not u["online"])
        assert ups == downs + (1 if harness.hub.is_user_online(user_id) else 0)
        assert harness.hub.is_user_online(user_id) == bool(harness.hub.registry.connections_for(user_id))


@pytest.mark.asyncio
async def test_notifications_reach_every_device_and_department(harness) -> None:
    harness.add_user("u1", department_id="eng")
    harness.add_user("u2", department_id="ops")
    await harness.connect("u1", "s1")
    await harness.connect("u1", "s2")
    await harness.connect("u2", "s3")

    delivered = await harness.hub.send_notification("u1", {"title": "Leave approved"})
    assert delivered == 2
    assert harness.server.sent("notification:new", to="s2") == [{"title": "Leave approved"}]

    assert await harness.hub.send_department_notification("ops", {"title": "Standup"}) == 1
    assert await harness.hub.publish_to_identity("nobody", "notification:new", {}) == 0


@pytest.mark.asyncio
async def test_notification_read_marks_it_for_the_caller(harness) -> None:
    harness.add_user("u1")
    await harness.connect("u1", "s1")

    await harness.hub.handle("notification:read", "s1", "n1")

    assert harness.notifications.read == [("n1", "u1")]


@pytest.mark.asyncio
async def test_sweeper_task_starts_and_stops(harness) -> None:
    harness.hub.start()
    assert harness.hub._sweeper is not None
    await harness.hub.stop()
    assert harness.hub._sweeper is None


@pytest.mark.asyncio
async def test_each_typer_sees_the_other_but_not_itself(harness) -> None:
    for user_id, sid in (("u1", "s1"), ("u2", "s2"), ("u3", "s3")):
        harness.add_user(user_id)
        harness.membership.add("C", user_id)
        await harness.connect(user_id, sid)
        await harness.join(sid, "C")

    await harness.hub.handle("typing:start", "s1", {"channelId": "C"})
    await harness.hub.handle("typing:start", "s2", {"channelId": "C"})

    assert harness.server.sent("typing:update", to="s1") == [{"channelId": "C", "users": ["u2"]}]
    assert harness.server.sent("typing:update", to="s2") == [{"channelId": "C", "users": ["u1"]}]
    assert harness.server.sent("typing:update", to="s3")[-1] == {"channelId": "C", "users": ["u1", "u2"]}
