"""Shared records, messages and the message bus used by the fake switch nodes."""

from __future__ import annotations

import abc
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from typing import Any

CTRL_PREFIX = "cn.xswitch.ctrl."
CDR_TOPIC = "cn.xswitch.event.cdr"
SEND_CDR = True
STAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

CDR_TEMPLATE = """{
    "hangup_cause": "NORMAL_CLEARING",
    "caller_id_number": "10000200",
    "duration": "29",
    "xcc_uid": "913240a1-e6af-4ae1-8116-a6aeb26efc37",
    "context": "default",
    "cc_queue_joined_epoch": "1619621138",
    "uuid": "5c29b3fb-b75a-4dbd-a33c-e4cb8c9af829",
    "cc_agent_session_uuid": "16473c52-295f-4fb3-83ce-f40f03cc125e",
    "sip_from_display": "10016",
    "start_stamp": "2021-04-28 21:56:17",
    "end_stamp": "2021-04-28 21:56:46",
    "sip_to_host": "154.8.164.96",
    "sip_term_status": "200",
    "sofia_profile_name": "public",
    "sip_local_network_addr": "192.168.0.111",
    "xcc_session": "612ee4b4-4fb9-4797-9459-53840e4a99d0",
    "sofia_profile_url": "sip:mod_sofia@192.168.0.111:17080",
    "sip_from_host": "xcc.xswitch.cn",
    "caller_id_name": "10000200",
    "cc_member_session_uuid": "5c29b3fb-b75a-4dbd-a33c-e4cb8c9af829",
    "cc_side": "infopd",
    "answer_stamp": "2021-04-28 21:56:17",
    "billsec": "29",
    "destination_number": "10000200",
    "direction": "outbound",
    "sip_network_port": "20003",
    "cc_agent_found": "true",
    "xcc_domain": "test.test",
    "sip_hangup_disposition": "send_bye",
    "leg": "a",
    "logical_direction": "outbound"
}"""


def _jfield(name: str, default: Any = "", *, as_string: bool = False, omitempty: bool = False):
    return field(
        default=default,
        metadata={"json": name, "as_string": as_string, "omitempty": omitempty},
    )


@dataclass
class CallDetailRecord:
    """A call detail record as published on the CDR topic."""

    uuid: str = _jfield("uuid")
    domain: str = _jfield("xcc_domain")
    mark: str = _jfield("xcc_mark")
    uid: str = _jfield("xcc_uid")
    context: str = _jfield("context")
    billsec: int = _jfield("billsec", 0, as_string=True)
    caller_id_name: str = _jfield("caller_id_name")
    caller_id_number: str = _jfield("caller_id_number")
    destination_number: str = _jfield("destination_number")
    origin_cid_number: str = _jfield("xcc_origin_cid_number")
    origin_dest_number: str = _jfield("xcc_origin_dest_number")
    origin_outbound_cid_number: str = _jfield("xcc_origin_outbound_cid_number")
    station_type: str = _jfield("xcc_stationtype")
    direction: str = _jfield("direction")
    duration: int = _jfield("duration", 0, as_string=True)
    hangup_cause: str = _jfield("hangup_cause")
    peer_uuid: str = _jfield("peer_uuid")
    sip_to_host: str = _jfield("sip_to_host")
    sip_from_host: str = _jfield("sip_from_host")
    sip_display: str = _jfield("sip_from_display")
    sip_network_addr: str = _jfield("sip_local_network_addr")
    sip_network_port: int = _jfield("sip_network_port", 0, as_string=True)
    sip_hangup_disposition: str = _jfield("sip_hangup_disposition", omitempty=True)
    sofia_profile_name: str = _jfield("sofia_profile_name")
    sofia_profile_url: str = _jfield("sofia_profile_url")
    start_stamp: str = _jfield("start_stamp")
    answer_stamp: str = _jfield("answer_stamp")
    end_stamp: str = _jfield("end_stamp")
    leg: str = _jfield("leg")
    serving_side: str = _jfield("cc_side")
    serving_agent_uuid: str = _jfield("cc_agent")
    serving_agent_name: str = _jfield("cc_agent_name")
    serving_agent_score: int = _jfield("cc_agent_rating_score", 0, as_string=True)
    serving_agent_session: str = _jfield("cc_agent_session_uuid")
    serving_agent_employee_number: str = _jfield("cc_agent_employee_number")
    serving_queue_uuid: str = _jfield("cc_queue")
    serving_queue_name: str = _jfield("cc_queue_name")
    serving_queue_joined_epoch: int = _jfield("cc_queue_joined_epoch", 0, as_string=True)
    serving_queue_answered_epoch: int = _jfield("cc_queue_answered_epoch", 0, as_string=True)
    serving_queue_terminated_epoch: int = _jfield("cc_queue_terminated_epoch", 0, as_string=True)
    serving_contact: str = _jfield("cc_contact")
    member_uuid: str = _jfield("cc_member_uuid")
    member_session: str = _jfield("cc_member_session_uuid")
    session: str = _jfield("xcc_session")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.metadata["omitempty"] and not value:
                continue
            out[f.metadata["json"]] = str(value) if f.metadata["as_string"] else value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallDetailRecord":
        """Build a record from its JSON form; unknown keys are ignored."""
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            key = f.metadata["json"]
            if key not in data:
                continue
            value = data[key]
            kwargs[f.name] = int(value) if f.metadata["as_string"] else value
        return cls(**kwargs)


def cdr_from_template() -> CallDetailRecord:
    """A fresh record filled from the built-in CDR template."""
    return CallDetailRecord.from_dict(json.loads(CDR_TEMPLATE))


@dataclass
class RequestParam:
    """Parameters of an ``Event.CDR`` request."""

    uuid: str = ""
    node_ip: str = ""
    node_uuid: str = ""
    cdr: CallDetailRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "node_ip": self.node_ip,
            "node_uuid": self.node_uuid,
            "cdr": self.cdr.to_dict() if self.cdr is not None else None,
        }


@dataclass
class Dialplan:
    """Parameters of an ``XCtrl.Dialplan`` request."""

    uid: str = _jfield("xcc_uid", omitempty=True)
    uuid: str = _jfield("uuid", omitempty=True)
    node_uuid: str = _jfield("node_uuid", omitempty=True)
    domain: str = _jfield("xcc_domain", omitempty=True)
    context: str = _jfield("context", omitempty=True)
    from_host: str = _jfield("sip_from_host", omitempty=True)
    to_host: str = _jfield("sip_to_host", omitempty=True)
    network: str = _jfield("sip_network", omitempty=True)
    date: str = _jfield("date_local", omitempty=True)
    direction: str = _jfield("caller_direction", omitempty=True)
    caller_name: str = _jfield("caller_name", omitempty=True)
    caller_number: str = _jfield("caller_number", omitempty=True)
    destination_number: str = _jfield("destination_number", omitempty=True)
    routing_tag: str = _jfield("xcc_routing_tag", omitempty=True)
    route_uuid: str = _jfield("xcc_route_uuid", omitempty=True)
    redlist_exec_checked: str = _jfield("xcc_redlist_exec_checked", omitempty=True)
    origin_cid_number: str = _jfield("OriginCidNumber")
    origin_dest_number: str = _jfield("OriginDestNumber")
    session: str = _jfield("xcc_session", omitempty=True)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.metadata["omitempty"] and not value:
                continue
            out[f.metadata["json"]] = value
        return out


@dataclass
class App:
    """A dialplan application with its argument string."""

    app: str = ""
    data: str = ""

    def to_dict(self) -> dict[str, str]:
        return {key: value for key, value in (("app", self.app), ("data", self.data)) if value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "App":
        return cls(app=data.get("app", "") or "", data=data.get("data", "") or "")


@dataclass
class FakeChannel:
    """A simulated call leg: its controller, peer and channel event data."""

    ctrl_uuid: str = ""
    peer_uuid: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    context: threading.Event | None = field(default=None, repr=False, compare=False)

    def ensure_context(self) -> threading.Event:
        """Create the cancellation event if there is none yet, and return it."""
        if self.context is None:
            self.context = threading.Event()
        return self.context

    def cancel(self) -> None:
        """Signal pending timers of this channel to stop."""
        if self.context is not None:
            self.context.set()

    @property
    def cancelled(self) -> bool:
        return self.context is not None and self.context.is_set()


@dataclass
class Options:
    """Behaviour switches of a fake node."""

    peer_wait: int = 0
    peer_answer: bool = False
    peer_reject: bool = False
    acd_assign: bool = False
    actual_play: bool = False


OptionFn = Callable[[Options], None]


def option_peer_answer(answer: bool) -> OptionFn:
    def apply(options: Options) -> None:
        options.peer_answer = answer

    return apply


def option_peer_wait(wait: int) -> OptionFn:
    def apply(options: Options) -> None:
        options.peer_wait = wait

    return apply


def option_peer_reject(reject: bool) -> OptionFn:
    def apply(options: Options) -> None:
        options.peer_reject = reject

    return apply


def option_acd_assign(assign: bool) -> OptionFn:
    def apply(options: Options) -> None:
        options.acd_assign = assign

    return apply


def option_actual_play(play: bool) -> OptionFn:
    def apply(options: Options) -> None:
        options.actual_play = play

    return apply


@dataclass
class Message:
    """A JSON-RPC message received from the bus."""

    version: str = "2.0"
    id: Any = None
    method: str = ""
    params: Any = None
    result: Any = None

    @staticmethod
    def from_json(data: bytes | str) -> "Message":
        decoded = json.loads(data)
        if not isinstance(decoded, dict):
            raise ValueError("a message must be a JSON object")
        return Message(
            version=decoded.get("jsonrpc", "2.0"),
            id=decoded.get("id"),
            method=decoded.get("method", "") or "",
            params=decoded.get("params"),
            result=decoded.get("result"),
        )


def _encode(obj: Any) -> bytes:
    return json.dumps(obj, indent=2, ensure_ascii=False).encode("utf-8")


def controller_topic(ctrl_uuid: str) -> str:
    """The topic a controller with the given UUID listens on."""
    return CTRL_PREFIX + ctrl_uuid


def result_envelope(msg_id: Any, result: Any) -> bytes:
    """Encode a JSON-RPC result answering the message with ``msg_id``."""
    return _encode({"jsonrpc": "2.0", "id": msg_id, "result": result})


def event_request(method: str, params: Any) -> bytes:
    """Encode a JSON-RPC request carrying an event."""
    return _encode({"jsonrpc": "2.0", "method": method, "params": params})


class Bus(abc.ABC):
    """A publish/request message bus."""

    @abc.abstractmethod
    def publish(self, topic: str, data: bytes) -> None:
        """Publish ``data`` on ``topic``."""

    @abc.abstractmethod
    def call(self, topic: str, request: bytes, timeout: float) -> bytes:
        """Send ``request`` on ``topic`` and return the reply body."""


class RecordingBus(Bus):
    """An in-memory bus that keeps everything published and answers calls from a table."""

    def __init__(self, responses: dict[str, bytes] | None = None) -> None:
        self.responses: dict[str, bytes] = dict(responses or {})
        self.published: list[tuple[str, bytes]] = []
        self.requests: list[tuple[str, bytes]] = []
        self._lock = threading.Lock()

    def publish(self, topic: str, data: bytes) -> None:
        with self._lock:
            self.published.append((topic, bytes(data)))

    def call(self, topic: str, request: bytes, timeout: float) -> bytes:
        with self._lock:
            self.requests.append((topic, bytes(request)))
            try:
                return self.responses[topic]
            except KeyError:
                raise TimeoutError(f"no reply on {topic} within {timeout}s") from None

    def messages(self, topic: str | None = None) -> list[Any]:
        """Decoded payloads published on ``topic``, or on every topic when None."""
        with self._lock:
            return [json.loads(data) for t, data in self.published if topic is None or t == topic]