import json
import threading

from xctrl.tboy.conference import (
    CONFERENCE_TOPIC,
    DEFAULT_REPLY_TOPIC,
    ConferenceEvent,
    TBoyConference,
)
from xctrl.tboy.protocol import FakeChannel, Message


class CaptureBus:
    def __init__(self):
        self.published = []
        self._lock = threading.Lock()

    def publish(self, topic, data):
        with self._lock:
            self.published.append((topic, json.loads(data)))

    def call(self, topic, request, timeout):
        return None

    def on(self, topic):
        with self._lock:
            return [data for name, data in self.published if name == topic]


def make_msg(method, params, msg_id="1"):
    body = {"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params}
    return Message.from_json(json.dumps(body).encode("utf-8"))


def make_boy():
    bus = CaptureBus()
    boy = TBoyConference(bus, "node-1", "example.com", hangup_delay=0.0)
    boy.init()
    for uuid in ("call-1", "call-2"):
        boy.cache_channel(uuid, FakeChannel(ctrl_uuid="ctrl-1", data={"uuid": uuid, "params": {}}))
    return bus, boy


def join(boy, uuid, name, flags=None, reply="reply"):
    params = {"uuid": uuid, "ctrl_uuid": "ctrl-1", "name": name, "flags": flags or []}
    boy.event(make_msg("XNode.Conference", params), "topic", reply)


def test_join_publishes_event_and_replies():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    event = bus.on(CONFERENCE_TOPIC)[0]
    assert event["method"] == "Event.Conference"
    assert event["params"]["action"] == "join"
    assert event["params"]["conference"] == "room1"
    assert event["params"]["uuid"] == "call-1"
    assert bus.on("reply")[0]["result"]["code"] == 200
    assert [m.data["uuid"] for m in boy.get_conference_members("room1")] == ["call-1"]


def test_mute_flag_sets_channel_state():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    join(boy, "call-1", "room1", ["mute"])
    channel = boy.get_conference_channel("call-1")
    assert channel.muted is True
    assert channel.conference_id == "room1"
    last = bus.on(CONFERENCE_TOPIC)[-1]["params"]
    assert last["action"] == "mute"
    assert last["muted"] is True


def test_vmute_then_unvmute():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    join(boy, "call-1", "room1", ["vmute"])
    assert boy.get_conference_channel("call-1").vmuted is True
    join(boy, "call-1", "room1", ["unvmute"])
    assert boy.get_conference_channel("call-1").vmuted is False
    assert bus.on(CONFERENCE_TOPIC)[-1]["params"]["action"] == "unvmute"


def test_unknown_channel_gets_error():
    bus, boy = make_boy()
    join(boy, "missing", "room1", reply="")
    result = bus.on("cn.xswitch.ctrl.ctrl-1")[0]["result"]
    assert result["code"] == 404
    assert result["message"] == "Unsupported Method XNode.Conference"
    assert boy.get_conference_channel("missing") is None


def test_conference_info_counts_members():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    join(boy, "call-2", "room1")
    params = {"uuid": "call-1", "name": "room1"}
    boy.event(make_msg("XNode.ConferenceInfo", params), "topic", "")
    result = bus.on("cn.xswitch.ctrl.ctrl-1")[0]["result"]
    assert result["code"] == 200
    assert result["data"]["member_count"] == len(boy.get_conference_members("room1"))
    assert result["data"]["conference_uuid"] == "conf-room1-uuid"
    assert result["data"]["domain"] == "example.com"


def test_conference_info_without_channel_uses_default_topic():
    bus, boy = make_boy()
    boy.conference_info(make_msg("XNode.ConferenceInfo", {"uuid": "nobody", "name": "room9"}), "")
    result = bus.on(DEFAULT_REPLY_TOPIC)[0]["result"]
    assert result["data"]["conference_name"] == "room9"


def test_remove_from_conference_sends_leave():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    boy.remove_from_conference("call-1")
    last = bus.on(CONFERENCE_TOPIC)[-1]["params"]
    assert last["action"] == "leave"
    assert last["conference"] == "room1"
    assert boy.get_conference_members("room1") == []


def test_hangup_leaves_conference_and_destroys():
    bus, boy = make_boy()
    join(boy, "call-1", "room1")
    boy.event(make_msg("XNode.Hangup", {"uuid": "call-1", "ctrl_uuid": "ctrl-1"}), "topic", "hup")
    assert boy.get_conference_channel("call-1") is None
    assert bus.on(CONFERENCE_TOPIC)[-1]["params"]["action"] == "leave"
    states = [
        item["params"]["state"]
        for item in bus.on("cn.xswitch.ctrl.ctrl-1")
        if item.get("method") == "Event.Channel"
    ]
    assert states == ["DESTROY"]


def test_init_clears_members():
    _, boy = make_boy()
    join(boy, "call-1", "room1")
    boy.init()
    assert boy.get_conference_members("room1") == []
    assert boy.channels == {}


def test_conference_event_omits_false_flags():
    event = ConferenceEvent(node_uuid="n", uuid="u", action="join", conference="c")
    assert event.to_dict() == {"node_uuid": "n", "uuid": "u", "action": "join", "conference": "c"}
    muted = ConferenceEvent(action="vmute", vmuted=True).to_dict()
    assert muted["vmute"] is True
    assert "muted" not in muted