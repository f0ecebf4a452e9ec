"""Tests for the client negotiation state machine."""
from __future__ import annotations

import asyncio

import pytest

from meetmesh.client.orchestrator import NegotiationOrchestrator
from meetmesh.client.peer import PeerState
from meetmesh.schemas import signaling as schemas

from fakes import FakeFactory, FakeMedia, MeshHarness, SlowCloseConnection


class Outbox:
    def __init__(self) -> None:
        self.messages: list[schemas.WireMessage] = []
        self.channel_closes = 0

    async def send(self, message: schemas.WireMessage) -> None:
        self.messages.append(message)

    async def close(self) -> None:
        self.channel_closes += 1

    def of_type(self, message_type: str) -> list[schemas.WireMessage]:
        return [message for message in self.messages if message.type == message_type]


def _client(session_id: str = "m", **kwargs) -> tuple[NegotiationOrchestrator, Outbox, FakeFactory]:
    outbox = Outbox()
    factory = FakeFactory(session_id)
    client = NegotiationOrchestrator(outbox.send, factory, close_channel=outbox.close, **kwargs)
    client.session_id = session_id
    return client, outbox, factory


@pytest.mark.asyncio
async def test_existing_members_trigger_offers_to_each():
    client, outbox, _ = _client("m")

    await client.handle(
        schemas.ExistingMembers(
            room_id="r1",
            participants=[
                schemas.MemberInfo(session_id="x", display_name="X"),
                schemas.MemberInfo(session_id="y", display_name="Y"),
            ],
        )
    )

    assert sorted(message.to for message in outbox.of_type("offer")) == ["x", "y"]
    assert client.state_of("x") is PeerState.NEGOTIATING
    assert client.peers == {"x": "X", "y": "Y"}


@pytest.mark.asyncio
async def test_glare_smaller_id_keeps_its_offer():
    client, outbox, factory = _client("a")
    await client.create_offer("b")

    await client.handle(schemas.RelayedOffer(sender="b", to="a", sdp={"type": "offer", "sdp": "from-b"}))

    assert outbox.of_type("answer") == []
    assert len(factory.created) == 1
    assert client.links["b"].offer_pending


@pytest.mark.asyncio
async def test_glare_larger_id_discards_own_offer_and_answers():
    client, outbox, factory = _client("b")
    await client.create_offer("a")
    original = client.links["a"]

    await client.handle(schemas.RelayedOffer(sender="a", to="b", sdp={"type": "offer", "sdp": "from-a"}))

    assert original.closed
    assert factory.created[0].close_calls == 1
    replacement = client.links["a"]
    assert replacement is not original
    assert factory.created[1].remote == {"type": "offer", "sdp": "from-a"}
    assert [message.to for message in outbox.of_type("answer")] == ["a"]
    assert len(client.links) == 1


@pytest.mark.asyncio
async def test_leaving_while_glare_loser_closes_its_offer_leaves_no_link():
    outbox = Outbox()
    factory = FakeFactory("b", connection_class=SlowCloseConnection)
    client = NegotiationOrchestrator(outbox.send, factory, close_channel=outbox.close)
    client.session_id = "b"
    await client.create_offer("a")

    answering = asyncio.create_task(
        client.handle(schemas.RelayedOffer(sender="a", to="b", sdp={"type": "offer", "sdp": "from-a"}))
    )
    await asyncio.sleep(0)
    await client.leave()
    await answering

    assert client.links == {}
    assert len(factory.created) == 1
    assert factory.created[0].close_calls == 1
    assert outbox.of_type("answer") == []


@pytest.mark.asyncio
async def test_no_links_are_created_after_shutdown():
    client, outbox, factory = _client("m")
    await client.shutdown()

    await client.create_offer("p")
    await client.handle_offer("q", {"type": "offer", "sdp": "late"})

    assert client.links == {}
    assert factory.created == []
    assert outbox.messages == []


@pytest.mark.asyncio
async def test_per_peer_locks_do_not_outlive_departed_peers():
    client, _, _ = _client("m")
    for remote in ("p", "q", "r"):
        await client.create_offer(remote)
        await client.handle(schemas.MemberLeft(session_id=remote, display_name=remote.upper()))

    assert client.links == {}
    assert len(client._locks) == 0


@pytest.mark.asyncio
async def test_offer_on_existing_link_is_answered_on_same_link():
    client, outbox, factory = _client("m")
    await client.handle(schemas.RelayedOffer(sender="p", to="m", sdp={"type": "offer", "sdp": "1"}))
    await client.handle(schemas.RelayedOffer(sender="p", to="m", sdp={"type": "offer", "sdp": "2"}))

    assert len(factory.created) == 1
    assert len(outbox.of_type("answer")) == 2
    assert client.state_of("p") is PeerState.CONNECTED


@pytest.mark.asyncio
async def test_stale_answer_and_early_candidate_are_dropped():
    client, _, factory = _client("m")

    await client.handle(schemas.RelayedAnswer(sender="ghost", to="m", sdp={"type": "answer", "sdp": "x"}))
    await client.handle(schemas.RelayedIceCandidate(sender="ghost", to="m", candidate={"candidate": "c"}))

    assert client.links == {}
    assert factory.created == []

    await client.handle(schemas.RelayedOffer(sender="p", to="m", sdp={"type": "offer", "sdp": "1"}))
    await client.handle(schemas.RelayedAnswer(sender="p", to="m", sdp={"type": "answer", "sdp": "late"}))
    assert factory.created[0].remote == {"type": "offer", "sdp": "1"}


@pytest.mark.asyncio
async def test_candidates_flow_both_ways():
    client, outbox, factory = _client("m")
    await client.create_offer("p")

    await client.handle(schemas.RelayedIceCandidate(sender="p", to="m", candidate={"candidate": "remote"}))
    await factory.created[0].events.on_ice_candidate({"candidate": "local"})

    assert factory.created[0].candidates == [{"candidate": "remote"}]
    sent = outbox.of_type("ice-candidate")
    assert [(message.to, message.candidate) for message in sent] == [("p", {"candidate": "local"})]


@pytest.mark.asyncio
async def test_member_left_closes_only_that_link():
    left: list[schemas.MemberLeft] = []

    async def on_peer_left(message: schemas.MemberLeft) -> None:
        left.append(message)

    client, _, _ = _client("m", on_peer_left=on_peer_left)
    await client.create_offer("p")
    await client.create_offer("q")
    link_p = client.links["p"]

    await client.handle(schemas.MemberLeft(session_id="p", display_name="P"))

    assert link_p.closed
    assert client.state_of("p") is PeerState.ABSENT
    assert client.state_of("q") is PeerState.NEGOTIATING
    assert [message.session_id for message in left] == ["p"]


@pytest.mark.asyncio
async def test_failed_connection_removes_link():
    client, _, factory = _client("m")
    await client.create_offer("p")

    await factory.created[0].events.on_state_change("failed")

    assert "p" not in client.links
    assert factory.created[0].close_calls == 1


@pytest.mark.asyncio
async def test_room_ended_tears_everything_down_once():
    ended: list[schemas.RoomEnded] = []

    async def on_room_ended(message: schemas.RoomEnded) -> None:
        ended.append(message)

    media = FakeMedia()
    client, outbox, factory = _client("m", media=media, on_room_ended=on_room_ended)
    await client.start_media()
    await client.join_room("r1", "Me")
    await client.create_offer("p")
    await client.create_offer("q")

    await client.handle(schemas.RoomEnded(room_id="r1"))
    await client.leave()
    await client.handle(schemas.RoomEnded(room_id="r1"))

    assert [connection.close_calls for connection in factory.created] == [1, 1]
    assert media.stop_calls == 1
    assert outbox.channel_closes == 1
    assert client.links == {}
    assert not client.joined
    assert len(ended) == 1


@pytest.mark.asyncio
async def test_room_ended_for_other_room_is_ignored():
    client, _, _ = _client("m")
    await client.join_room("r1", "Me")

    await client.handle(schemas.RoomEnded(room_id="other"))

    assert client.joined
    assert not client.shut_down


@pytest.mark.asyncio
async def test_media_failure_degrades_to_receive_only():
    client, _, factory = _client("m", media=FakeMedia(fail=True))

    tracks = await client.start_media()
    await client.create_offer("p")
    await client.shutdown()

    assert tracks == []
    assert client.receive_only
    assert factory.created[0].tracks == []


@pytest.mark.asyncio
async def test_local_tracks_are_attached_and_video_can_be_replaced():
    client, _, factory = _client("m", media=FakeMedia())
    await client.start_media()
    await client.create_offer("p")

    await client.replace_video_track("screen")

    assert factory.created[0].tracks == ["audio-track", "video-track"]
    assert factory.created[0].replaced == [("video", "screen")]


@pytest.mark.asyncio
async def test_chat_and_admin_commands_require_a_room():
    client, outbox, _ = _client("m")

    with pytest.raises(RuntimeError):
        await client.send_chat("hi")

    await client.join_room("r1", "Me")
    await client.send_chat("hi")
    await client.send_admin_action("mute", "p")

    chat = outbox.of_type("chat-message")[0]
    assert (chat.room_id, chat.text, chat.display_name) == ("r1", "hi", "Me")
    assert outbox.of_type("admin-action")[0].target_session_id == "p"


@pytest.mark.parametrize("host_id, guest_id", [("h", "a"), ("a", "h")])
@pytest.mark.asyncio
async def test_two_party_mesh_completes_exactly_one_exchange(host_id: str, guest_id: str):
    harness = MeshHarness()
    host = await harness.add_client(host_id)
    guest = await harness.add_client(guest_id)
    await harness.pump()

    await host.create_room("r1", "Host")
    await guest.join_room("r1", "Guest")
    await harness.pump()

    assert harness.sent_of_type("answer") and len(harness.sent_of_type("answer")) == 1
    assert list(host.links) == [guest_id]
    assert list(guest.links) == [host_id]
    assert host.state_of(guest_id) is PeerState.CONNECTED
    assert guest.state_of(host_id) is PeerState.CONNECTED

    offerer, answerer = (host, guest) if host_id < guest_id else (guest, host)
    offerer_conn = offerer.links[answerer.session_id]._connection
    answerer_conn = answerer.links[offerer.session_id]._connection
    assert answerer_conn.remote == offerer_conn.local
    assert offerer_conn.remote == answerer_conn.local


@pytest.mark.asyncio
async def test_three_party_mesh_has_one_link_per_pair():
    harness = MeshHarness()
    clients = [await harness.add_client(session_id) for session_id in ("s2", "s1", "s3")]
    await harness.pump()

    await clients[0].create_room("r1", "S2")
    for client in clients[1:]:
        await client.join_room("r1", client.session_id.upper())
        await harness.pump()

    for client in clients:
        others = {other.session_id for other in clients} - {client.session_id}
        assert set(client.links) == others
        assert all(link.state is PeerState.CONNECTED for link in client.links.values())
    assert len(harness.sent_of_type("answer")) == 3


@pytest.mark.asyncio
async def test_end_room_scenario_notifies_everyone_and_frees_room_id():
    harness = MeshHarness()
    host = await harness.add_client("h")
    guest = await harness.add_client("a")
    await harness.pump()
    await host.create_room("r1", "Host")
    await guest.join_room("r1", "Guest")
    await harness.pump()

    await host.end_room()
    await harness.pump()

    for session_id in ("h", "a"):
        assert {"type": "room-ended", "room_id": "r1"} in harness.delivered[session_id]
    assert host.shut_down and guest.shut_down
    assert host.links == {} and guest.links == {}
    assert "r1" not in harness.service.registry

    newcomer = await harness.add_client("n")
    await harness.pump()
    await newcomer.join_room("r1", "New")
    await harness.pump()
    assert set(harness.service.registry.members("r1")) == {"n"}
    assert newcomer.links == {}
