import time

import pytest

from xctrl.tboy.cdr import CDR_SERVER_TOPIC, CdrChannel, CdrServer
from xctrl.tboy.protocol import CallDetailRecord, Message, RecordingBus, controller_topic

NODE = "node-1"
CTRL = "ctrl-1"


@pytest.fixture
def bus():
    return RecordingBus()


def make_server(bus, answer_delay=0.01, hangup_delay=5.0):
    return CdrServer(bus, NODE, "example.com", answer_delay=answer_delay, hangup_delay=hangup_delay)


def dial_msg(uuid="leg-a"):
    return Message(
        id="7",
        method="XNode.Dial",
        params={
            "ctrl_uuid": CTRL,
            "destination": {
                "call_params": [
                    {
                        "uuid": uuid,
                        "cid_number": "1000",
                        "dest_number": "2000",
                        "params": {"sip_h_X-FS-Session": "sess-1"},
                    }
                ]
            },
        },
    )


def channel_states(bus):
    return [m["params"]["state"] for m in bus.messages(controller_topic(CTRL)) if m.get("method") == "Event.Channel"]


def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_dial_caches_channel_and_replies(bus):
    server = make_server(bus)
    server.dial(dial_msg(), "")
    channel = server.get_channel("leg-a")
    assert channel.cdr_data.session == "sess-1"
    assert channel.cdr_data.destination_number == "2000"
    assert channel.data["params"]["xcc_session"] == "sess-1"
    assert "CALLING" in channel_states(bus)
    results = [m for m in bus.messages(controller_topic(CTRL)) if "result" in m]
    assert results[0]["result"]["code"] == 200
    server.hangup(Message(id="8", method="XNode.Hangup", params={"uuid": "leg-a", "ctrl_uuid": CTRL}), "")
    channel.worker.join(1)


def test_dial_without_call_params_is_an_error(bus):
    server = make_server(bus)
    server.dial(Message(id="1", method="XNode.Dial", params={"ctrl_uuid": CTRL, "destination": {}}), "")
    result = bus.messages(controller_topic(CTRL))[0]["result"]
    assert result["code"] == 404
    assert server.channels == {}


def test_simulated_call_ends_with_cdr(bus):
    server = make_server(bus, answer_delay=0.01, hangup_delay=0.01)
    server.dial(dial_msg(), "")
    assert wait_until(lambda: server.get_channel("leg-a") is None)
    assert channel_states(bus) == ["CALLING", "ANSWERED", "DESTROY"]
    cdrs = bus.messages(CDR_SERVER_TOPIC)
    assert len(cdrs) == 1
    assert cdrs[0]["method"] == "Event.CDR"
    cdr = cdrs[0]["params"]["cdr"]
    assert cdr["uuid"] == "leg-a"
    assert cdr["hangup_cause"] == "NORMAL_CLEARING"
    assert int(cdr["duration"]) >= int(cdr["billsec"]) >= 0


def test_hangup_cancels_simulation(bus):
    server = make_server(bus, answer_delay=0.05, hangup_delay=5.0)
    server.dial(dial_msg(), "")
    channel = server.get_channel("leg-a")
    server.hangup(Message(id="8", method="XNode.Hangup", params={"uuid": "leg-a", "ctrl_uuid": CTRL}), "")
    channel.worker.join(2)
    assert not channel.worker.is_alive()
    assert channel_states(bus).count("DESTROY") == 1
    assert len(bus.messages(CDR_SERVER_TOPIC)) == 1
    assert server.get_channel("leg-a") is None


def test_hangup_unknown_channel(bus):
    server = make_server(bus)
    server.hangup(Message(id="1", method="XNode.Hangup", params={"uuid": "nope", "ctrl_uuid": CTRL}), "")
    result = bus.messages(controller_topic(CTRL))[0]["result"]
    assert result["code"] == 404
    assert result["message"] == "Unsupported Method XNode.Hangup"


def test_answer_sets_state_and_stamp(bus):
    server = make_server(bus)
    channel = CdrChannel(uuid="u1", data={"uuid": "u1"}, cdr_data=CallDetailRecord(uuid="u1"))
    server.cache_channel("u1", channel)
    server.answer(Message(id="1", method="XNode.Answer", params={"uuid": "u1", "ctrl_uuid": CTRL}), "")
    assert channel.ctrl_uuid == CTRL
    assert channel.data["state"] == "ANSWERED"
    assert channel.cdr_data.answer_stamp != ""
    assert "ANSWERED" in channel_states(bus)


def test_send_cdr_without_record_publishes_nothing(bus):
    server = make_server(bus)
    server.send_cdr(CdrChannel(uuid="u1", data={"uuid": "u1"}))
    assert bus.published == []


def test_send_cdr_measures_duration(bus):
    server = make_server(bus)
    from datetime import datetime

    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    cdr = CallDetailRecord(uuid="u1", start_stamp=stamp, answer_stamp=stamp)
    server.send_cdr(CdrChannel(uuid="u1", data={"uuid": "u1"}, cdr_data=cdr))
    assert cdr.duration in (0, 1)
    assert cdr.billsec == cdr.duration
    params = bus.messages(CDR_SERVER_TOPIC)[0]["params"]
    assert params["node_uuid"] == NODE
    assert params["node_ip"] == "127.0.0.1"


def test_event_dispatch(bus):
    server = make_server(bus)
    server.event(Message(id="1", method="", result={"code": 200}), "t", "")
    assert bus.published == []
    server.event(Message(id="2", method="XNode.Foo", params={"ctrl_uuid": CTRL}), "t", "")
    assert bus.messages(controller_topic(CTRL))[0]["result"]["code"] == 404


def test_channel_registry(bus):
    server = make_server(bus)
    channel = CdrChannel(uuid="u1")
    server.cache_channel("u1", channel)
    assert server.get_channel("u1") is channel
    server.delete_channel("u1")
    assert server.get_channel("u1") is None