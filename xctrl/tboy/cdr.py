"""A fake switch node that simulates calls and publishes their CDRs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from xctrl.tboy.protocol import (
    STAMP_FORMAT,
    Bus,
    CallDetailRecord,
    Message,
    RequestParam,
    controller_topic,
    event_request,
    result_envelope,
)

logger = logging.getLogger(__name__)

CDR_SERVER_TOPIC = "cn.xswitch.cdr"
_ZERO_TIME = datetime(1, 1, 1)


def _omit_empty(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value not in ("", 0, None, False, {}, [])}


def _now_stamp() -> str:
    return datetime.now().strftime(STAMP_FORMAT)


def _parse_stamp(stamp: str) -> datetime:
    try:
        return datetime.strptime(stamp, STAMP_FORMAT)
    except ValueError:
        return _ZERO_TIME


@dataclass
class CdrChannel:
    """A simulated call leg together with the CDR being collected for it."""

    ctrl_uuid: str = ""
    uuid: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    cdr_data: CallDetailRecord | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)
    context: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    worker: threading.Thread | None = field(default=None, repr=False, compare=False)

    def cancel(self) -> None:
        self.context.set()


class CdrServer:
    """Answers dial, answer and hangup requests and emits CDRs when calls end."""

    def __init__(
        self,
        bus: Bus,
        node_uuid: str = "",
        domain: str = "",
        *,
        answer_delay: float = 1.0,
        hangup_delay: float = 3.0,
    ) -> None:
        self.bus = bus
        self.node_uuid = node_uuid
        self.domain = domain
        self.answer_delay = answer_delay
        self.hangup_delay = hangup_delay
        self.channels: dict[str, CdrChannel] = {}
        self._lock = threading.RLock()

    def cache_channel(self, uuid: str, channel: CdrChannel) -> None:
        with self._lock:
            self.channels[uuid] = channel

    def get_channel(self, uuid: str) -> CdrChannel | None:
        with self._lock:
            return self.channels.get(uuid)

    def delete_channel(self, uuid: str) -> None:
        with self._lock:
            self.channels.pop(uuid, None)

    def _respond(self, msg: Message, reply: str, request: dict[str, Any], code: int, message: str) -> None:
        result = {"code": code, "message": message, "node_uuid": self.node_uuid, "uuid": request.get("uuid", "")}
        topic = reply or controller_topic(request.get("ctrl_uuid", "") or "")
        self.bus.publish(topic, result_envelope(msg.id, _omit_empty(result)))

    def _publish_channel(self, topic: str, data: dict[str, Any]) -> None:
        self.bus.publish(topic, event_request("Event.Channel", _omit_empty(data)))

    def ok(self, msg: Message, reply: str) -> None:
        if isinstance(msg.params, dict):
            self._respond(msg, reply, msg.params, 200, "OK")

    def error(self, msg: Message, reply: str) -> None:
        if isinstance(msg.params, dict):
            self._respond(msg, reply, msg.params, 404, "Unsupported Method " + msg.method)

    def answer(self, msg: Message, reply: str) -> None:
        request = msg.params
        if not isinstance(request, dict):
            logger.error("invalid request parameters: %r", request)
            return
        channel = self.get_channel(request.get("uuid", ""))
        if channel is not None:
            channel.ctrl_uuid = request.get("ctrl_uuid", "") or ""
        self.ok(msg, reply)
        if channel is None:
            return
        channel.data["state"] = "ANSWERED"
        channel.data["answer_epoch"] = int(time.time())
        self._publish_channel(controller_topic(channel.ctrl_uuid), channel.data)
        if channel.cdr_data is not None:
            channel.cdr_data.answer_stamp = _now_stamp()

    def hangup(self, msg: Message, reply: str) -> None:
        request = msg.params
        if not isinstance(request, dict):
            logger.error("invalid request parameters: %r", request)
            return
        uuid = request.get("uuid", "")
        channel = self.get_channel(uuid)
        if channel is None:
            self.error(msg, reply)
            return
        channel.cancel()
        self.ok(msg, reply)
        channel.data["state"] = "DESTROY"
        channel.data["cause"] = "NORMAL_CLEARING"
        self._publish_channel(controller_topic(channel.ctrl_uuid), channel.data)
        self.send_cdr(channel)
        self.delete_channel(uuid)

    def send_cdr(self, channel: CdrChannel) -> None:
        """Close the channel's CDR, work out its durations and publish it."""
        cdr = channel.cdr_data
        if cdr is None:
            return
        cdr.end_stamp = _now_stamp()
        start = _parse_stamp(cdr.start_stamp)
        end = _parse_stamp(cdr.end_stamp)
        cdr.duration = int((end - start).total_seconds())
        if cdr.answer_stamp:
            cdr.billsec = int((end - _parse_stamp(cdr.answer_stamp)).total_seconds())
        params = RequestParam(
            uuid=channel.data.get("uuid", ""),
            node_ip="127.0.0.1",
            node_uuid=self.node_uuid,
            cdr=cdr,
        )
        self.bus.publish(CDR_SERVER_TOPIC, event_request("Event.CDR", params.to_dict()))
        logger.info("Sent CDR for channel: %s", channel.data.get("uuid", ""))

    def dial(self, msg: Message, reply: str) -> None:
        request = msg.params
        if not isinstance(request, dict):
            logger.error("invalid request parameters: %r", request)
            return
        ctrl_uuid = request.get("ctrl_uuid", "") or ""
        call_params = (request.get("destination") or {}).get("call_params") or []
        if not call_params:
            self.error(msg, reply)
            return
        first = call_params[0]
        uuid = first.get("uuid", "")
        params = dict(first.get("params") or {})
        params["xcc_session"] = params.get("sip_h_X-FS-Session", "")
        now = int(time.time())
        event = {
            "node_uuid": self.node_uuid,
            "uuid": uuid,
            "direction": "outbound",
            "state": "CALLING",
            "cid_name": "TEST",
            "cid_number": first.get("cid_number", ""),
            "dest_number": first.get("dest_number", ""),
            "answer_epoch": now,
            "answered": False,
            "create_epoch": now,
            "params": params,
        }
        cdr = CallDetailRecord(
            uuid=uuid,
            domain=self.domain,
            context="default",
            caller_id_name=event["cid_name"],
            caller_id_number=event["cid_number"],
            destination_number=event["dest_number"],
            start_stamp=_now_stamp(),
            hangup_cause="NORMAL_CLEARING",
            leg="a",
            direction="outbound",
            session=params.get("sip_h_X-FS-Session", ""),
        )
        channel = CdrChannel(ctrl_uuid=ctrl_uuid, uuid=uuid, data=event, cdr_data=cdr)
        self.cache_channel(uuid, channel)
        self._publish_channel(controller_topic(ctrl_uuid), dict(event))
        channel.worker = threading.Thread(target=self._simulate_call, args=(channel,), daemon=True)
        channel.worker.start()
        self.ok(msg, reply)

    def _simulate_call(self, channel: CdrChannel) -> None:
        topic = controller_topic(channel.ctrl_uuid)
        time.sleep(self.answer_delay)
        channel.data["state"] = "ANSWERED"
        channel.data["answer_epoch"] = int(time.time())
        channel.data["answered"] = True
        self._publish_channel(topic, channel.data)
        if channel.cdr_data is not None:
            channel.cdr_data.answer_stamp = _now_stamp()
        if channel.context.wait(self.hangup_delay):
            return
        channel.data["state"] = "DESTROY"
        channel.data["cause"] = "NORMAL_CLEARING"
        self._publish_channel(topic, channel.data)
        self.send_cdr(channel)
        self.delete_channel(channel.uuid)

    def event(self, msg: Message, topic: str, reply: str) -> None:
        """Dispatch a message received on ``topic``."""
        logger.info("Received event: %s %s", topic, msg.method)
        if not msg.method and msg.result is not None:
            logger.info("Got a response: %s", msg.id)
            return
        handlers = {
            "XNode.Answer": self.answer,
            "XNode.Hangup": self.hangup,
            "XNode.Dial": self.dial,
        }
        handler = handlers.get(msg.method)
        if handler is None:
            logger.error("Unsupported Method: %s", msg.method)
            self.error(msg, reply)
        else:
            handler(msg, reply)