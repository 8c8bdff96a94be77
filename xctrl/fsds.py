"""Builders for dial strings, file strings and channel variable blocks."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

TCP = "tcp"
TLS = "tls"


def quote(value: str) -> str:
    """Quote a channel variable value if it holds a quote or a comma."""
    needs_quotes = False
    if "'" in value:
        value = value.replace("'", "\\'")
        needs_quotes = True
    if "," in value:
        needs_quotes = True
    return f"'{value}'" if needs_quotes else value


def _join_path(*elements: str) -> str:
    parts = [element for element in elements if element]
    if not parts:
        return ""
    joined = posixpath.normpath("/".join(parts))
    if joined.startswith("//"):
        joined = "/" + joined.lstrip("/")
    return joined


@dataclass
class FSDS:
    """A block of channel variables such as ``{a=b,caller_id_name=x}``."""

    params: dict[str, str] = field(default_factory=dict)
    caller_id_name: str = ""
    caller_id_number: str = ""

    def render(self) -> str:
        pairs = list((self.params or {}).items())
        if self.caller_id_name:
            pairs.append(("caller_id_name", self.caller_id_name))
        if self.caller_id_number:
            pairs.append(("caller_id_number", self.caller_id_number))
        if not pairs:
            return ""
        return "{" + ",".join(f"{key}={quote(value)}" for key, value in pairs) + "}"


def _render_fsds(fsds: FSDS | None) -> str:
    return fsds.render() if fsds is not None else ""


def _open_block(fsds: FSDS | None) -> str | None:
    """The variable block without its closing brace, or None when empty."""
    rendered = _render_fsds(fsds)
    return rendered[:-1] if rendered else None


@dataclass
class Endpoint:
    """A generic endpoint: ``type/[profile/]dest``."""

    fsds: FSDS | None = None
    type: str = ""
    profile: str = ""
    dest: str = ""

    def render(self) -> str:
        out = [_render_fsds(self.fsds), self.type, "/"]
        if self.profile:
            out += [self.profile, "/"]
        out.append(self.dest)
        return "".join(out)


@dataclass
class IP(Endpoint):
    """An endpoint addressed by IP, port and transport."""

    ip: str = ""
    port: str = ""
    transport: str = ""

    def render(self) -> str:
        out = [super().render()]
        if self.ip:
            out += ["@", self.ip]
            if self.port:
                out += [":", self.port]
        if self.transport:
            out += [";transport=", self.transport]
        return "".join(out)


@dataclass
class Gateway(Endpoint):
    """An endpoint reached through a named gateway."""

    gateway_name: str = ""

    def render(self) -> str:
        return (
            f"{_render_fsds(self.fsds)}{self.type}/{self.profile}/"
            f"{self.gateway_name}/{self.dest}"
        )


@dataclass
class User(Endpoint):
    """A user endpoint, optionally with a domain."""

    domain: str = ""

    def render(self) -> str:
        rendered = super().render()
        if self.domain:
            rendered += "@" + self.domain
        return rendered


@dataclass
class File:
    """A playable file with optional channel variables."""

    fsds: FSDS | None = None
    path: str = ""
    name: str = ""

    def render(self) -> str:
        return _render_fsds(self.fsds) + self.path


@dataclass
class PNGFile(File):
    """An image file shown as video, with display and TTS options."""

    ms: str = ""
    alpha: bool = False
    png_fps: int = 0
    text: str = ""
    tts_engine: str = ""
    tts_voice: str = ""
    dtext: str = ""
    fg: str = ""
    bg: str = ""
    size: str = ""
    scale_w: str = ""
    scale_h: str = ""

    def render(self) -> str:
        if not self.name:
            raise ValueError("the name parameter is not set")
        opened = _open_block(self.fsds)
        head = opened + "," if opened is not None else "{"
        options = [
            ("png_ms", self.ms),
            ("dtext", self.dtext),
            ("png_fps", str(self.png_fps) if self.png_fps else ""),
            ("bg", self.bg),
            ("fg", self.fg),
            ("text", self.text),
            ("tts_engine", self.tts_engine),
            ("tts_voice", self.tts_voice),
            ("alpha", "true" if self.alpha else ""),
            ("size", self.size),
            ("scale_w", self.scale_w),
            ("scale_h", self.scale_h),
        ]
        body = "".join(f"{key}={quote(value)}," for key, value in options if value)
        params = (head + body).rstrip(",")
        return params + "}" + _join_path(self.path, self.name)


@dataclass
class Agora(Endpoint):
    """An Agora endpoint: ``type/profile/token-or-appid/channel/dest``."""

    app_id: str = ""
    token: str = ""
    channel: str = ""

    def render(self) -> str:
        out = [_render_fsds(self.fsds)]
        if self.type:
            out += [self.type, "/"]
        if self.profile:
            out += [self.profile, "/"]
        if self.token:
            out += [self.token, "/"]
        elif self.app_id:
            out += [self.app_id, "/"]
        else:
            raise ValueError("agora token and agora appid is nil")
        if not self.channel:
            raise ValueError("agora channel is nil")
        out += [self.channel, "/"]
        if self.dest:
            out.append(self.dest)
        return "".join(out)


@dataclass
class XRTC(Endpoint):
    """An XRTC endpoint carrying its media settings as variables."""

    video_use_audio_ice: str = ""
    rtp_payload_space: str = ""
    absolute_codec_string: str = ""
    url: str = ""

    def render(self) -> str:
        out = []
        opened = _open_block(self.fsds)
        if opened is not None:
            out += [opened, ","]
        out += [
            "video_use_audio_ice=", self.video_use_audio_ice, ",",
            "rtp_payload_space=", self.rtp_payload_space, ",",
            "absolute_codec_string=", self.absolute_codec_string, ",",
            "url=", self.url, "}",
        ]
        if self.type:
            out += [self.type, "/"]
        if self.profile:
            out += [self.profile, "/"]
        return "".join(out)


@dataclass
class TRTC(Endpoint):
    """A TRTC endpoint: ``type/app_id/room_id/dest`` with user credentials."""

    app_id: str = ""
    room_id: str = ""
    user_id: str = ""
    user_sig: str = ""

    def render(self) -> str:
        out = []
        opened = _open_block(self.fsds)
        if opened is not None:
            out += [opened, ","]
        out += [
            "trtc_user_id=", self.user_id, ",",
            "trtc_user_sig=", self.user_sig, "}",
            self.type, "/", self.app_id, "/", self.room_id, "/", self.dest,
        ]
        return "".join(out)


@dataclass
class VVFile(Endpoint):
    """A text-to-speech video file: ``vv://tts://engine|voice|text``."""

    vv_ms: str = ""
    engine: str = ""
    voice: str = ""
    text: str = ""

    def render(self) -> str:
        out = []
        opened = _open_block(self.fsds)
        if opened is not None:
            out.append(opened)
            if self.vv_ms:
                out += [",vv_ms=", self.vv_ms]
            out.append("}")
        out += ["vv://tts://", self.engine, "|", self.voice, "|", self.text]
        return "".join(out)