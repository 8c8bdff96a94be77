# xctrl

Building blocks for software that controls a telephony switch over a
message bus. The package has no runtime dependencies.

- **`xctrl.fsds`** builds dial strings for switch endpoints and media
  files. It covers plain endpoints, IP, gateway and user endpoints, PNG
  files shown as video, Agora, XRTC and TRTC endpoints, and text-to-speech
  video files.
- **`xctrl.consistent`** is a consistent-hash ring with virtual nodes. It
  picks which node serves a key, such as a conference name.
- **`xctrl.tboy`** holds simulated switch nodes for tests. They answer
  control requests and publish the channel events and call detail records
  (CDRs) that a real node would send.

## Dial strings

Channel variables go in a leading `{key=value,...}` block built by `FSDS`.
`quote` wraps a value in single quotes when it holds a comma or a quote,
and escapes any quotes inside it:

```python
from xctrl.fsds import FSDS, Endpoint, Gateway, quote

quote("plain")   # "plain"
quote("a,b")     # "'a,b'"

Endpoint(fsds=FSDS(caller_id_name="Alice"), type="user", dest="1000").render()
# "{caller_id_name=Alice}user/1000"

Gateway(type="sofia", profile="gateway", gateway_name="gw1", dest="1234").render()
# "sofia/gateway/gw1/1234"
```

Each builder (`FSDS`, `Endpoint`, `IP`, `Gateway`, `User`, `File`,
`PNGFile`, `Agora`, `XRTC`, `TRTC`, `VVFile`) is a dataclass with a
`render()` method that returns the string. `PNGFile.render()` raises
`ValueError` when no file name is set. `Agora.render()` raises
`ValueError` when it has neither a token nor an app id, or has no channel.

## Consistent hashing

```python
from xctrl.consistent import ConsistentHash, HashNode

ring = ConsistentHash(100)
ring.add_nodes(HashNode(uuid="1", name="node-1"), HashNode(uuid="2", name="node-2"))
owner = ring.get("123-dev-example")
ring.node_count()          # 2
ring.virtual_node_count()  # 600: three virtual nodes per replica per node
```

While the ring is unchanged, a given key always maps to the same node.
`add_nodes` raises `ValueError` when a node has no uuid, when no node is
given, or when a uuid is already on the ring. `delete_node` raises
`LookupError` for an unknown node. `get` raises `LookupError` on an empty
ring. The default hash is `optimized_hash`, a 32-bit FNV-style hash. You
can pass another `bytes -> int` function.

The module also keeps one shared ring. Call `init(virtual_nodes_nums,
hash_func)` first; only the first call has any effect, and `0` means 250
replicas. Then use `add_nodes`, `exist_node`, `delete_nodes`, `get`,
`get_node_count` and `get_virtual_node_count`. Before `init`, these raise
`RuntimeError`.

## Simulated switch nodes

The simulators publish everything to a `Bus`
(`xctrl.tboy.protocol`). `RecordingBus` keeps each message published, in
`published`. `messages(topic)` decodes the ones sent to a topic. `call`
answers from a table of canned replies and raises `TimeoutError` for any
topic not in the table.

```python
from xctrl.tboy.node import TBoy
from xctrl.tboy.protocol import Message, RecordingBus

bus = RecordingBus()
boy = TBoy(bus, "node-1", "example.com", hangup_delay=0.1)

msg = Message.from_json(
    '{"jsonrpc": "2.0", "id": "1", "method": "XNode.Dial",'
    ' "params": {"ctrl_uuid": "ctrl-1", "destination": {"call_params":'
    ' [{"uuid": "call-1", "cid_number": "1000", "dest_number": "2000"}]}}}'
)
boy.event(msg, "cn.xswitch.node.node-1", "")

events = bus.messages("cn.xswitch.ctrl.ctrl-1")
# CALLING, ANSWERED and READY channel events, then the result with code 200.
# After hangup_delay seconds a DESTROY event follows, and a CDR is
# published on "cn.xswitch.event.cdr".
```

Replies go to the `reply` topic given to `event`. If that is empty, they
go to `cn.xswitch.ctrl.<ctrl_uuid>` from the request. Fields with zero
values are left out of the JSON.

The nodes are:

- `TBoyBase` (`xctrl.tboy.base`) handles the simple requests: `ok`,
  `error`, `dial_error`, `accept`, `answer`, `stop`, `set_var`,
  `get_var`, `read_dtmf`, `record`, `native_api` and `native_js_api`.
  `get_var` always answers "can not locate session".
- `TBoy` (`xctrl.tboy.node`) adds `dial`, `bridge`, `channel_bridge`,
  `hangup` and `play`. `event` dispatches `XNode.*` methods to these
  handlers. The delays are set in the constructor: `hangup_delay`,
  `no_answer_delay`, `play_delay` and `native_app_delay`.
- `TBoyConference` (`xctrl.tboy.conference`) adds `XNode.Conference`
  (join, mute, unmute, vmute, unvmute, deaf, undeaf) and
  `XNode.ConferenceInfo`. Changes are published as `Event.Conference` on
  `cn.xswitch.event.conference`. `hangup` first announces that the
  channel left its conference.
- `CdrServer` (`xctrl.tboy.cdr`) handles dial, answer and hangup. It
  collects one CDR per call, with its duration and billsec worked out, and
  publishes it on `cn.xswitch.cdr`. A dialled call answers after
  `answer_delay` seconds and hangs up `hangup_delay` seconds later, unless
  a hangup request comes first.

The behaviour of the far end is set by an `Options` value: `peer_wait`,
`peer_answer`, `peer_reject`, `acd_assign` and `actual_play`. The helpers
`option_peer_answer`, `option_peer_wait`, `option_peer_reject`,
`option_acd_assign` and `option_actual_play` each return a function that
sets one option:

```python
from xctrl.tboy.protocol import Options, option_peer_answer

options = Options()
option_peer_answer(True)(options)
boy = TBoy(bus, "node-1", "example.com", options)
```

When `actual_play` is set on macOS, `play` runs the `say`, `wget` and
`play` commands to play the media for real.

## What the package does not do

- It has no client for a real message bus. `Bus` is an abstract class with
  `publish` and `call`, and `RecordingBus` only keeps messages in memory.
  To put a simulated node on a live bus, write your own `Bus` subclass.
- It has no command-line program.