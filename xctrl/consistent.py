"""A consistent hash ring that maps keys to switch nodes."""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

HashFunc = Callable[[bytes], int]

_MASK32 = 0xFFFFFFFF
_DEFAULT_VIRTUAL_NODES = 250


def optimized_hash(data: bytes) -> int:
    """A 32-bit FNV-style hash with a final mixing step."""
    offset32 = 2166136261
    prime32 = 16777619
    value = offset32
    for byte in data:
        value = (value * prime32) & _MASK32
        value ^= byte
    value = ((value >> 16) ^ (value << 16)) & _MASK32
    return (value * prime32) & _MASK32


@dataclass
class HashNode:
    """A node placed on the ring."""

    uuid: str = ""
    name: str = ""
    port: int = 0


class ConsistentHash:
    """A hash ring with three virtual-node patterns per configured virtual node."""

    def __init__(self, virtual_nodes_nums: int = _DEFAULT_VIRTUAL_NODES, hash_func: HashFunc | None = None) -> None:
        self.virtual_nodes_nums = virtual_nodes_nums or _DEFAULT_VIRTUAL_NODES
        self.hash = hash_func or optimized_hash
        self.nodes: list[HashNode] = []
        self.nodes_hashes: list[int] = []
        self.hash2node: dict[int, HashNode] = {}
        self._lock = threading.RLock()

    def _virtual_hashes(self, uuid: str, index: int) -> Iterator[int]:
        count = self.virtual_nodes_nums
        for i in range(count):
            yield self.hash(f"{uuid}|virtual|{i}|{index * count + i}|salt1".encode())
            yield self.hash(f"{i}|{uuid}|{index}|virtual|salt2".encode())
            yield self.hash(f"node|{index}|{uuid}|{i}|salt3".encode())

    def add_nodes(self, *nodes: HashNode) -> None:
        """Place nodes on the ring; raise ValueError on a missing or duplicate UUID."""
        if any(not node.uuid for node in nodes):
            raise ValueError("node uuid is required")
        if not nodes:
            raise ValueError("require one node at least")
        with self._lock:
            known = {node.uuid for node in self.nodes}
            for node in nodes:
                if node.uuid in known:
                    raise ValueError(f"node with UUID {node.uuid} already exists")
            for index, node in enumerate(nodes):
                self.nodes.append(node)
                for value in self._virtual_hashes(node.uuid, index):
                    self.nodes_hashes.append(value)
                    self.hash2node[value] = node
            self.nodes_hashes.sort()

    def exist_node(self, node: HashNode) -> bool:
        with self._lock:
            return any(existing.uuid == node.uuid for existing in self.nodes)

    def delete_node(self, node: HashNode) -> None:
        """Remove a node and its virtual nodes; raise LookupError if it is absent."""
        if not node.uuid:
            raise ValueError("node uuid is required")
        with self._lock:
            index = next((k for k, existing in enumerate(self.nodes) if existing.uuid == node.uuid), None)
            if index is None:
                logger.warning("deleting a nonexistent node %s", node.name)
                raise LookupError("not found this node " + node.uuid)
            del self.nodes[index]
            for value in self._virtual_hashes(node.uuid, index):
                position = bisect.bisect_left(self.nodes_hashes, value)
                if position < len(self.nodes_hashes) and self.nodes_hashes[position] == value:
                    del self.nodes_hashes[position]
                self.hash2node.pop(value, None)

    def get(self, key: str) -> HashNode | None:
        """The node owning ``key``: the first virtual node clockwise of its hash."""
        with self._lock:
            if not self.nodes_hashes:
                raise LookupError("no node in hash, use add_nodes to add some nodes")
            position = bisect.bisect_right(self.nodes_hashes, self.hash(key.encode()))
            if position == len(self.nodes_hashes):
                position = 0
            return self.hash2node.get(self.nodes_hashes[position])

    def node_count(self) -> int:
        with self._lock:
            return len(self.nodes)

    def virtual_node_count(self) -> int:
        with self._lock:
            return len(self.nodes_hashes)


_default: ConsistentHash | None = None
_init_lock = threading.Lock()


def init(virtual_nodes_nums: int = 0, hash_func: HashFunc | None = None) -> None:
    """Create the shared ring; only the first call has any effect."""
    global _default
    with _init_lock:
        if _default is None:
            _default = ConsistentHash(virtual_nodes_nums, hash_func)


def _ring() -> ConsistentHash:
    if _default is None:
        raise RuntimeError("consistent hash is not initialised; call init() first")
    return _default


def add_nodes(*nodes: HashNode) -> None:
    _ring().add_nodes(*nodes)


def exist_node(node: HashNode) -> bool:
    return _ring().exist_node(node)


def delete_nodes(node: HashNode) -> None:
    _ring().delete_node(node)


def get(key: str) -> HashNode | None:
    return _ring().get(key)


def get_node_count() -> int:
    return _ring().node_count()


def get_virtual_node_count() -> int:
    return _ring().virtual_node_count()