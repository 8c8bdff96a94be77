"""The full fake switch node: dialling, bridging and hanging up simulated calls."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from xctrl.tboy.base import TBoyBase
from xctrl.tboy.protocol import (
    CDR_TOPIC,
    SEND_CDR,
    STAMP_FORMAT,
    Bus,
    CallDetailRecord,
    FakeChannel,
    Message,
    Options,
    RequestParam,
    cdr_from_template,
    controller_topic,
    event_request,
)

logger = logging.getLogger(__name__)

_CDR_NODE_UUID = "test-node"
_CDR_NODE_IP = "127.0.0.1"
# Answer stamps keep the layout the node has always sent: hour, 12-hour hour, minute.
_ANSWER_STAMP_FORMAT = "%Y-%m-%d %H:%I:%M"
_PLAY_HOST = "https://xswitch.cn"
_PLAY_FILE = "/tmp/test.wav"

Handler = Callable[[Message, str], None]


def _clean(data: dict[str, Any]) -> dict[str, Any]:
    """Drop zero values, the way the wire format leaves them out."""
    return {key: value for key, value in data.items() if value not in ("", 0, None, False, {}, [])}


def _now_stamp() -> str:
    return datetime.now().strftime(STAMP_FORMAT)


def _answer_stamp(epoch: int) -> str:
    return datetime.fromtimestamp(epoch).strftime(_ANSWER_STAMP_FORMAT)


def _session(data: dict[str, Any]) -> str:
    return (data.get("params") or {}).get("sip_h_X-FS-Session", "")


def _first_call_params(request: dict[str, Any]) -> dict[str, Any] | None:
    call_params = (request.get("destination") or {}).get("call_params") or []
    return call_params[0] if call_params else None


def _run(args: list[str], *, echo: bool = True) -> None:
    try:
        subprocess.run(args, check=True, stdout=None if echo else subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        logger.critical("command failed: %s", " ".join(args), exc_info=True)
        raise


class TBoy(TBoyBase):
    """A fake switch node that plays out whole calls on the bus."""

    def __init__(
        self,
        bus: Bus,
        node_uuid: str = "",
        domain: str = "",
        options: Options | None = None,
        *,
        hangup_delay: float = 3.0,
        no_answer_delay: float = 60.0,
        play_delay: float = 0.9,
        native_app_delay: float = 0.2,
    ) -> None:
        super().__init__(bus, node_uuid, domain, options)
        self.hangup_delay = hangup_delay
        self.no_answer_delay = no_answer_delay
        self.play_delay = play_delay
        self.native_app_delay = native_app_delay
        self._workers: list[threading.Thread] = []
        self._workers_lock = threading.Lock()

    def _spawn(self, target: Callable[..., None], *args: Any) -> None:
        worker = threading.Thread(target=target, args=args, daemon=True)
        with self._workers_lock:
            self._workers.append(worker)
        worker.start()

    def _wait_workers(self, timeout: float | None = None) -> None:
        """Wait for the background call simulations started so far."""
        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)

    def _publish_channel(self, topic: str, data: dict[str, Any]) -> None:
        self.bus.publish(topic, event_request("Event.Channel", _clean(data)))

    def _set_state(self, topic: str, data: dict[str, Any], state: str) -> None:
        data["state"] = state
        if state == "DESTROY":
            data["cause"] = "NORMAL_CLEARING"
        self._publish_channel(topic, data)

    @staticmethod
    def _leg_cdr(data: dict[str, Any], leg: str) -> CallDetailRecord:
        cdr = cdr_from_template()
        cdr.uuid = data.get("uuid", "")
        cdr.leg = leg
        cdr.start_stamp = _now_stamp()
        cdr.end_stamp = _now_stamp()
        cdr.caller_id_name = data.get("cid_name", "")
        cdr.caller_id_number = data.get("cid_number", "")
        cdr.destination_number = data.get("dest_number", "")
        return cdr

    def _send_cdr(self, param_uuid: str, cdr: CallDetailRecord) -> None:
        if not SEND_CDR:
            return
        params = RequestParam(uuid=param_uuid, node_ip=_CDR_NODE_IP, node_uuid=_CDR_NODE_UUID, cdr=cdr)
        self.bus.publish(CDR_TOPIC, event_request("Event.CDR", params.to_dict()))

    def _a_leg_cdr(self, aleg: dict[str, Any]) -> CallDetailRecord:
        cdr = self._leg_cdr(aleg, "a")
        if aleg.get("answer_epoch"):
            cdr.answer_stamp = _answer_stamp(aleg["answer_epoch"])
        cdr.session = _session(aleg)
        return cdr

    def _reply_ok(self, msg: Message, reply: str, request: dict[str, Any]) -> None:
        self._respond(msg, reply, request, self._response(200, "OK"))

    def dial(self, msg: Message, reply: str) -> None:
        """Place an outbound call that is answered at once and hangs up later."""
        request = msg.params
        if not isinstance(request, dict):
            return
        ctrl_uuid = request.get("ctrl_uuid", "") or ""
        topic = controller_topic(ctrl_uuid)
        first = _first_call_params(request)
        if first is None:
            raise ValueError("dial request has no call params")
        uuid = first.get("uuid", "") or ""
        params = dict(first.get("params") or {})
        params["xcc_session"] = params.get("sip_h_X-FS-Session", "")
        now = int(time.time())
        event: dict[str, Any] = {
            "node_uuid": self.node_uuid,
            "uuid": uuid,
            "direction": "outbound",
            "state": "CALLING",
            "cid_name": "TEST",
            "cid_number": first.get("cid_number", ""),
            "dest_number": first.get("dest_number", ""),
            "answer_epoch": now,
            "answered": True,
            "create_epoch": now,
            "params": params,
        }
        self.cache_channel(uuid, FakeChannel(ctrl_uuid=ctrl_uuid, data=event))
        for state in ("CALLING", "ANSWERED", "READY"):
            self._set_state(topic, event, state)

        channel = FakeChannel(ctrl_uuid=ctrl_uuid, data=event)
        channel.ensure_context()
        self.cache_channel(uuid, channel)

        if not params.get("xcc_action"):
            self._spawn(self._dial_timeout, channel)
        self._reply_ok(msg, reply, request)

    def _dial_timeout(self, channel: FakeChannel) -> None:
        if channel.ensure_context().wait(self.hangup_delay):
            return
        data = channel.data
        self._set_state(controller_topic(channel.ctrl_uuid), data, "DESTROY")
        cdr = self._leg_cdr(data, "a")
        cdr.session = _session(data)
        self._send_cdr(data.get("uuid", ""), cdr)

    def bridge(self, msg: Message, reply: str) -> None:
        """Call a b-leg for a known channel; it answers, rejects or never answers."""
        request = msg.params
        if not isinstance(request, dict):
            return
        uuid = request.get("uuid", "") or ""
        channel = self.channels.get(uuid)
        if channel is None:
            logger.error("Invalid Channel %s", uuid)
            raise LookupError(f"Invalid Channel {uuid}")
        request_ctrl = request.get("ctrl_uuid", "") or ""
        topic = controller_topic(request_ctrl or channel.ctrl_uuid)
        first = _first_call_params(request)
        if first is None:
            logger.error("bridge request without call params: %r", request)
            return
        params = dict(first.get("params") or {})
        params["xcc_session"] = params.get("sip_h_X-FS-Session", "")
        bleg: dict[str, Any] = {
            "node_uuid": self.node_uuid,
            "uuid": first.get("uuid", "") or "",
            "direction": "outbound",
            "state": "CALLING",
            "cid_name": "TEST",
            "cid_number": first.get("cid_number", ""),
            "dest_number": first.get("dest_number", ""),
            "answered": False,
            "create_epoch": int(time.time()),
            "params": params,
        }
        self._publish_channel(topic, bleg)
        time.sleep(self.options.peer_wait)

        b_topic = controller_topic(request_ctrl)
        aleg = channel.data
        if self.options.peer_reject:
            self._set_state(controller_topic(channel.ctrl_uuid), aleg, "DESTROY")
            self._send_cdr(aleg.get("uuid", ""), self._a_leg_cdr(aleg))
            self._spawn(self._end_b_leg, b_topic, bleg, channel, "")
        elif self.options.peer_answer:
            bleg["state"] = "ANSWERED"
            bleg["answer_epoch"] = int(time.time())
            self._publish_channel(topic, bleg)
            self.cache_channel(bleg["uuid"], FakeChannel(ctrl_uuid=request_ctrl, data=bleg))
            self._set_state(topic, aleg, "BRIDGED")
            self._set_state(topic, bleg, "BRIDGED")
            answer_stamp = _answer_stamp(aleg["answer_epoch"]) if aleg.get("answer_epoch") else None
            self._spawn(self._unbridge_a_leg, channel)
            self._spawn(self._unbridge_b_leg, b_topic, bleg, channel, answer_stamp)
        else:
            time.sleep(self.no_answer_delay)
            self._spawn(self._end_a_leg, channel)
            self._spawn(self._end_b_leg, b_topic, bleg, channel, "")
        self._reply_ok(msg, reply, request)

    def _end_a_leg(self, channel: FakeChannel) -> None:
        aleg = channel.data
        self._set_state(controller_topic(channel.ctrl_uuid), aleg, "DESTROY")
        self._send_cdr(aleg.get("uuid", ""), self._a_leg_cdr(aleg))

    def _end_b_leg(self, topic: str, bleg: dict[str, Any], channel: FakeChannel, answer_stamp: str | None) -> None:
        self._set_state(topic, bleg, "DESTROY")
        cdr = self._leg_cdr(bleg, "b")
        if answer_stamp is not None:
            cdr.answer_stamp = answer_stamp
        cdr.session = _session(bleg)
        self._send_cdr(channel.data.get("uuid", ""), cdr)

    def _unbridge_a_leg(self, channel: FakeChannel) -> None:
        time.sleep(self.hangup_delay)
        self._set_state(controller_topic(channel.ctrl_uuid), channel.data, "UNBRIDGE")
        self._end_a_leg(channel)

    def _unbridge_b_leg(
        self, topic: str, bleg: dict[str, Any], channel: FakeChannel, answer_stamp: str | None
    ) -> None:
        time.sleep(self.hangup_delay)
        self._set_state(topic, bleg, "UNBRIDGE")
        self._end_b_leg(topic, bleg, channel, answer_stamp)

    def channel_bridge(self, msg: Message, reply: str) -> None:
        """Bridge two known channels, then tear both down after a while."""
        request = msg.params
        if not isinstance(request, dict):
            return
        uuid = request.get("uuid", "") or ""
        aleg = self.channels.get(uuid)
        if aleg is None:
            logger.error("Invalid Channel %s", uuid)
            raise LookupError(f"Invalid Channel {uuid}")
        a_topic = controller_topic(request.get("ctrl_uuid", "") or aleg.ctrl_uuid)
        aleg.data["peer_uuid"] = request.get("peer_uuid", "") or ""
        self._set_state(a_topic, aleg.data, "BRIDGE")
        logger.info("a leg:%s b leg:%s", aleg.data.get("uuid", ""), aleg.data["peer_uuid"])

        bleg = self.channels.get(aleg.data["peer_uuid"])
        if bleg is None:
            logger.info("Invalid b Channel %s", uuid)
        else:
            bleg.data["peer_uuid"] = uuid
            self._set_state(controller_topic(bleg.ctrl_uuid), bleg.data, "BRIDGE")

        self._spawn(self._end_channel_bridge, a_topic, aleg, bleg)
        self._reply_ok(msg, reply, request)

    def _end_channel_bridge(self, topic: str, aleg: FakeChannel, bleg: FakeChannel | None) -> None:
        time.sleep(self.hangup_delay)
        legs = [(aleg, "a")] + ([(bleg, "b")] if bleg is not None else [])
        for leg, _ in legs:
            self._set_state(topic, leg.data, "UNBRIDGE")
            self._set_state(topic, leg.data, "DESTROY")
            leg.cancel()
        for leg, name in legs:
            cdr = self._leg_cdr(leg.data, name)
            cdr.peer_uuid = leg.data.get("peer_uuid", "")
            self._send_cdr(leg.data.get("uuid", ""), cdr)

    def hangup(self, msg: Message, reply: str) -> None:
        """Hang up a known channel and publish its CDR."""
        request = msg.params
        if not isinstance(request, dict):
            return
        channel = self.channels.get(request.get("uuid", "") or "")
        if channel is None:
            self._no_session(msg, reply, request)
            return
        channel.cancel()
        self.ok(msg, reply)
        data = channel.data
        self._set_state(controller_topic(channel.ctrl_uuid), data, "DESTROY")
        cdr = self._leg_cdr(data, "b")
        cdr.session = _session(data)
        self._send_cdr(data.get("uuid", ""), cdr)

    def play(self, msg: Message, reply: str) -> None:
        """Pretend to play the media, or really play it when asked on macOS."""
        request = msg.params if isinstance(msg.params, dict) else None
        if self.options.actual_play and request is not None and sys.platform == "darwin":
            media = request.get("media") or {}
            data = media.get("data", "") or ""
            if media.get("type") == "TEXT":
                _run(["say", "-v", "Ting-Ting", data])
            elif data.startswith(_PLAY_HOST):
                _run(["wget", "--quiet", "-O", _PLAY_FILE, data])
                _run(["play", _PLAY_FILE], echo=False)
        else:
            time.sleep(self.play_delay)
        self.ok(msg, reply)

    def _native_app(self, msg: Message, reply: str) -> None:
        time.sleep(self.native_app_delay)
        self.ok(msg, reply)

    def _in_background(self, handler: Handler) -> Handler:
        def start(msg: Message, reply: str) -> None:
            self._spawn(handler, msg, reply)

        return start

    def _handlers(self) -> dict[str, Handler]:
        return {
            "XNode.Accept": self.accept,
            "XNode.SetVar": self.set_var,
            "XNode.GetVar": self.get_var,
            "XNode.Answer": self.answer,
            "XNode.Hangup": self.hangup,
            "XNode.NativeApp": self._in_background(self._native_app),
            "XNode.NativeAPI": self.native_api,
            "XNode.NativeJSAPI": self.native_js_api,
            "XNode.Play": self._in_background(self.play),
            "XNode.Stop": self.stop,
            "XNode.Record": self.record,
            "XNode.ReadDTMF": self.read_dtmf,
            "XNode.Dial": self.dial,
            "XNode.Bridge": self.bridge,
            "XNode.ChannelBridge": self.channel_bridge,
        }

    def event(self, msg: Message, topic: str, reply: str) -> None:
        """Dispatch a message received on ``topic``."""
        logger.info("%s %s", topic, msg.method)
        if not msg.method and msg.result is not None:
            logger.info("Got a response: %s", msg.id)
            return
        handler = self._handlers().get(msg.method)
        if handler is None:
            logger.error("Unsupported Method: %s", msg.method)
            self.error(msg, reply)
        else:
            handler(msg, reply)