"""Request handlers shared by every fake switch node."""

from __future__ import annotations

import logging
from typing import Any

from xctrl.tboy.protocol import (
    Bus,
    FakeChannel,
    Message,
    Options,
    controller_topic,
    result_envelope,
)

logger = logging.getLogger(__name__)

_STATUS_TEXT = (
    "UP 0 years, 0 days, 0 hours, 9 minutes, 10 seconds, 674 milliseconds, 555 microseconds\n"
    "FreeSWITCH (Version 1.10.8-dev git 89ac59d 2022-03-30 04:05:36Z 64bit) is ready\n"
    "0 session(s) since startup\n"
    "0 session(s) - peak 0, last 5min 0 \n"
    "0 session(s) per Sec out of max 30, peak 0, last 5min 0 \n"
    "1000 session(s) max\n"
    "min idle cpu 0.00/96.33\n"
    "Current Stack Size/Max 240K/8192K\n"
)

_JS_STATUS: dict[str, Any] = {
    "systemStatus": "ready",
    "uptime": {
        "years": 0,
        "days": 0,
        "hours": 0,
        "minutes": 9,
        "seconds": 10,
        "milliseconds": 679,
        "microseconds": 389,
    },
    "version": "1.10.8-dev git 89ac59d 2022-03-30 04:05:36Z 64bit",
    "sessions": {
        "count": {"total": 0, "active": 0, "peak": 0, "peak5Min": 0, "limit": 1000},
        "rate": {"current": 0, "max": 30, "peak": 0, "peak5Min": 0},
    },
    "idleCPU": {"used": 0, "allowed": 96.333333333333329},
    "stackSizeKB": {"current": 240, "max": 8192},
}

_DIAL_CAUSES = {404: "NO_ROUTE_DESTINATION", 486: "USER_BUSY"}


def _omit_empty(data: dict[str, Any]) -> dict[str, Any]:
    """Drop zero values, the way the wire format leaves them out."""
    return {key: value for key, value in data.items() if value not in ("", 0, None, False, {}, [])}


def _request(msg: Message) -> dict[str, Any] | None:
    return msg.params if isinstance(msg.params, dict) else None


class TBoyBase:
    """A fake switch node answering control requests on a message bus."""

    def __init__(
        self,
        bus: Bus,
        node_uuid: str = "",
        domain: str = "",
        options: Options | None = None,
    ) -> None:
        self.bus = bus
        self.node_uuid = node_uuid
        self.domain = domain
        self.options = options if options is not None else Options()
        self.channels: dict[str, FakeChannel] = {}

    def init(self) -> None:
        """Forget every cached channel."""
        self.channels = {}

    def set_uuid(self, uuid: str) -> None:
        self.node_uuid = uuid

    def set_domain(self, domain: str) -> None:
        self.domain = domain

    def cache_channel(self, uuid: str, channel: FakeChannel) -> None:
        self.channels[uuid] = channel

    def _respond(self, msg: Message, reply: str, request: dict[str, Any], result: dict[str, Any]) -> None:
        topic = reply or controller_topic(request.get("ctrl_uuid", "") or "")
        self.bus.publish(topic, result_envelope(msg.id, _omit_empty(result)))

    def _response(self, code: int, message: str, uuid: str = "", **extra: Any) -> dict[str, Any]:
        return {"code": code, "message": message, "node_uuid": self.node_uuid, "uuid": uuid, **extra}

    def _no_session(self, msg: Message, reply: str, request: dict[str, Any]) -> None:
        self._respond(
            msg, reply, request,
            self._response(400, "can not locate session", request.get("uuid", "")),
        )

    def ok(self, msg: Message, reply: str) -> None:
        """Answer the request with code 200."""
        request = _request(msg)
        if request is None:
            return
        self._respond(msg, reply, request, self._response(200, "OK", request.get("uuid", "")))

    def error(self, msg: Message, reply: str) -> None:
        """Answer the request as an unsupported method."""
        request = _request(msg)
        if request is None:
            return
        self._respond(
            msg, reply, request,
            self._response(404, "Unsupported Method " + msg.method, request.get("uuid", "")),
        )

    def dial_error(self, msg: Message, reply: str, code: int) -> None:
        """Answer a dial request with a failure code and its hangup cause."""
        request = _request(msg)
        if request is None:
            return
        cause = _DIAL_CAUSES.get(code, "NORMAL_CLEARING")
        self._respond(
            msg, reply, request,
            self._response(code, "Dial Error", request.get("uuid", ""), cause=cause),
        )

    def _take_control(self, msg: Message, reply: str) -> None:
        request = _request(msg)
        if request is None:
            logger.error("invalid request parameters: %r", msg.params)
            return
        channel = self.channels.get(request.get("uuid", ""))
        if channel is not None:
            channel.ctrl_uuid = request.get("ctrl_uuid", "") or ""
        self.ok(msg, reply)

    def accept(self, msg: Message, reply: str) -> None:
        self._take_control(msg, reply)

    def answer(self, msg: Message, reply: str) -> None:
        self._take_control(msg, reply)

    def stop(self, msg: Message, reply: str) -> None:
        """Answer with code 200 on the reply topic exactly as given."""
        request = _request(msg)
        if request is None:
            logger.error("invalid request parameters: %r", msg.params)
            return
        data = result_envelope(msg.id, _omit_empty(self._response(200, "OK", request.get("uuid", ""))))
        logger.info("reply to %s %s", reply, data.decode("utf-8"))
        self.bus.publish(reply, data)

    def set_var(self, msg: Message, reply: str) -> None:
        """Copy the request's variables into the channel parameters."""
        request = _request(msg)
        if request is None:
            return
        channel = self.channels.get(request.get("uuid", ""))
        if channel is None:
            self._no_session(msg, reply, request)
            return
        with channel.lock:
            channel.data.setdefault("params", {}).update(request.get("data") or {})
        self._respond(msg, reply, request, self._response(200, "OK", request.get("uuid", "")))

    def get_var(self, msg: Message, reply: str) -> None:
        """Always reports that the session cannot be located."""
        request = _request(msg)
        if request is None:
            return
        self._no_session(msg, reply, request)

    def read_dtmf(self, msg: Message, reply: str) -> None:
        """Store the request's variables and report the digit 1 ended by #."""
        request = _request(msg)
        if request is None:
            return
        channel = self.channels.get(request.get("uuid", ""))
        if channel is not None:
            with channel.lock:
                channel.data.setdefault("params", {}).update(request.get("data") or {})
        self._respond(
            msg, reply, request,
            self._response(200, "OK", request.get("uuid", ""), dtmf="1", terminator="#"),
        )

    def record(self, msg: Message, reply: str) -> None:
        """Answer with a record event for a known channel."""
        request = _request(msg)
        if request is None:
            return
        uuid = request.get("uuid", "")
        if uuid not in self.channels:
            self._no_session(msg, reply, request)
            return
        event = {
            "node_uuid": self.node_uuid,
            "uuid": uuid,
            "action": request.get("action", ""),
            "path": request.get("path", ""),
        }
        self._respond(msg, reply, request, event)

    def native_api(self, msg: Message, reply: str) -> None:
        request = _request(msg)
        if request is None:
            return
        if request.get("cmd") == "status":
            self.native_api_status(msg, reply)
        else:
            self.error(msg, reply)

    def native_api_status(self, msg: Message, reply: str) -> None:
        request = _request(msg)
        if request is None:
            return
        self._respond(msg, reply, request, self._response(200, "OK", data=_STATUS_TEXT))

    def native_js_api(self, msg: Message, reply: str) -> None:
        request = _request(msg)
        if request is None:
            logger.error("invalid request parameters: %r", msg.params)
            return
        logger.info("%r", request)
        command = (request.get("data") or {}).get("command", "")
        if command == "status":
            self.native_js_api_status(msg, reply)
        elif command == "sofia.status":
            logger.error("Unsupported Method: %s", msg.method)
        else:
            self.error(msg, reply)

    def native_js_api_status(self, msg: Message, reply: str) -> None:
        request = _request(msg)
        if request is None:
            return
        self._respond(msg, reply, request, self._response(200, "OK", data=_JS_STATUS))