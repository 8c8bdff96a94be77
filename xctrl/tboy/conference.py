"""A fake switch node that keeps track of conference members."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from xctrl.tboy.node import TBoy
from xctrl.tboy.protocol import (
    Bus,
    FakeChannel,
    Message,
    Options,
    controller_topic,
    event_request,
    result_envelope,
)

logger = logging.getLogger(__name__)

CONFERENCE_TOPIC = "cn.xswitch.event.conference"
DEFAULT_REPLY_TOPIC = "cn.xswitch.ctrl.default"

_FLAG_ACTIONS = {
    "mute": ("mute", "muted", True),
    "unmute": ("unmute", "muted", False),
    "vmute": ("vmute", "vmuted", True),
    "unvmute": ("unvmute", "vmuted", False),
    "deaf": ("deaf", "muted", True),
    "undeaf": ("undeaf", "muted", False),
}
_AUDIO_ACTIONS = {"mute", "unmute", "deaf", "undeaf"}
_VIDEO_ACTIONS = {"vmute", "unvmute"}


def _clean(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value not in ("", 0, None, False, {}, [])}


@dataclass
class FakeConferenceChannel:
    """A channel together with its conference membership."""

    channel: FakeChannel
    conference_id: str = ""
    muted: bool = False
    vmuted: bool = False

    @property
    def data(self) -> dict[str, Any]:
        return self.channel.data

    @property
    def ctrl_uuid(self) -> str:
        return self.channel.ctrl_uuid


@dataclass
class ConferenceEvent:
    """A conference membership change as published on the bus."""

    node_uuid: str = ""
    uuid: str = ""
    action: str = ""
    conference: str = ""
    muted: bool = False
    vmuted: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "node_uuid": self.node_uuid,
            "uuid": self.uuid,
            "action": self.action,
            "conference": self.conference,
        }
        if self.muted:
            out["muted"] = True
        if self.vmuted:
            out["vmute"] = True
        return out


class TBoyConference(TBoy):
    """A fake node that handles conference joins, mutes and info requests."""

    def __init__(
        self,
        bus: Bus,
        node_uuid: str = "",
        domain: str = "",
        options: Options | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(bus, node_uuid, domain, options, **kwargs)
        self.conference_channels: dict[str, FakeConferenceChannel] = {}
        self._conf_lock = threading.RLock()

    def init(self) -> None:
        super().init()
        with self._conf_lock:
            self.conference_channels = {}

    def cache_conference_channel(self, uuid: str, channel: FakeConferenceChannel) -> None:
        with self._conf_lock:
            self.conference_channels[uuid] = channel

    def get_conference_channel(self, uuid: str) -> FakeConferenceChannel | None:
        with self._conf_lock:
            return self.conference_channels.get(uuid)

    def conference(self, msg: Message, reply: str) -> None:
        """Join a channel to a conference or change its mute flags."""
        request = msg.params
        if not isinstance(request, dict):
            logger.error("Failed to unmarshal conference request: %r", request)
            self.error(msg, reply)
            return
        uuid = request.get("uuid", "") or ""
        base = self.channels.get(uuid)
        if base is None:
            logger.error("Channel not found: %s", uuid)
            self.error(msg, reply)
            return
        channel = self.get_conference_channel(uuid)
        if channel is None:
            channel = FakeConferenceChannel(channel=base)
            self.cache_conference_channel(uuid, channel)

        action = "join"
        flags = {"muted": False, "vmuted": False}
        for flag in request.get("flags") or []:
            if flag in _FLAG_ACTIONS:
                action, name, value = _FLAG_ACTIONS[flag]
                flags[name] = value

        name = request.get("name", "") or ""
        if action == "join":
            channel.conference_id = name
            channel.muted = False
            channel.vmuted = False
        elif action in _AUDIO_ACTIONS:
            channel.muted = flags["muted"]
        elif action in _VIDEO_ACTIONS:
            channel.vmuted = flags["vmuted"]

        self._send_conference_event(channel, action, name)
        self.ok(msg, reply)

    def _send_conference_event(self, channel: FakeConferenceChannel, action: str, conference: str) -> None:
        event = ConferenceEvent(
            node_uuid=self.node_uuid,
            uuid=channel.data.get("uuid", ""),
            action=action,
            conference=conference,
            muted=channel.muted,
            vmuted=channel.vmuted,
        )
        self.bus.publish(CONFERENCE_TOPIC, event_request("Event.Conference", event.to_dict()))

    def conference_info(self, msg: Message, reply: str) -> None:
        """Report a conference's name, member count and domain."""
        request = msg.params
        if not isinstance(request, dict):
            logger.error("Failed to unmarshal conference info request: %r", request)
            self.error(msg, reply)
            return
        name = request.get("name", "") or ""
        info = _clean(
            {
                "conference_name": name,
                "conference_uuid": f"conf-{name}-uuid",
                "member_count": len(self.get_conference_members(name)),
                "running": True,
                "answered": True,
                "domain": self.domain,
            }
        )
        result = _clean({"code": 200, "message": "OK", "node_uuid": self.node_uuid, "data": info})
        if not reply:
            channel = self.channels.get(request.get("uuid", "") or "")
            reply = controller_topic(channel.ctrl_uuid) if channel is not None else DEFAULT_REPLY_TOPIC
        self.bus.publish(reply, result_envelope(msg.id, result))

    def get_conference_members(self, conference_name: str) -> list[FakeConferenceChannel]:
        with self._conf_lock:
            return [
                channel
                for channel in self.conference_channels.values()
                if channel.conference_id == conference_name
            ]

    def remove_from_conference(self, uuid: str) -> None:
        """Announce that a channel left its conference and forget it."""
        with self._conf_lock:
            channel = self.conference_channels.pop(uuid, None)
            if channel is not None:
                self._send_conference_event(channel, "leave", channel.conference_id)

    def event(self, msg: Message, topic: str, reply: str) -> None:
        """Handle conference requests here; pass everything else on."""
        logger.info("%s %s", topic, msg.method)
        if not msg.method and msg.result is not None:
            logger.info("Got a response: %s", msg.id)
            return
        if msg.method == "XNode.Conference":
            self.conference(msg, reply)
        elif msg.method == "XNode.ConferenceInfo":
            self.conference_info(msg, reply)
        else:
            super().event(msg, topic, reply)

    def hangup(self, msg: Message, reply: str) -> None:
        """Take the channel out of its conference, then hang it up."""
        request = msg.params
        if not isinstance(request, dict):
            return
        self.remove_from_conference(request.get("uuid", "") or "")
        super().hangup(msg, reply)