import random
import uuid

import pytest

from xctrl import consistent
from xctrl.consistent import ConsistentHash, HashNode, optimized_hash


def _numbered_nodes(count):
    return [HashNode(uuid=str(i), name=str(i)) for i in range(1, count + 1)]


def test_optimized_hash_is_deterministic_32bit():
    first = optimized_hash(b"123-dev-xswitch.cn")
    assert first == optimized_hash(b"123-dev-xswitch.cn")
    assert 0 <= first <= 0xFFFFFFFF
    assert optimized_hash(b"a") != optimized_hash(b"b")


def test_add_nodes_counts():
    ring = ConsistentHash(100)
    ring.add_nodes(*[HashNode(uuid=str(uuid.uuid4()), name=f"xcc-node-1{i}") for i in range(1, 10)])
    assert ring.virtual_node_count() == 9 * 100 * 3
    assert ring.node_count() == 9
    assert ring.nodes_hashes == sorted(ring.nodes_hashes)


def test_default_virtual_nodes():
    ring = ConsistentHash(0)
    ring.add_nodes(HashNode(uuid="1"))
    assert ring.virtual_node_count() == 250 * 3


def test_get_is_consistent():
    ring = ConsistentHash(100)
    nodes = [HashNode(uuid=str(i), name=f"xcc-node-{i}") for i in range(1, 5)]
    ring.add_nodes(*nodes)

    names = ["123-dev-xswitch.cn", "456-dev-xswitch.cn", "123-dev-xswitch.cn", "456-dev-xswitch.cn"]
    found = [ring.get(name) for name in names]
    assert found[0] is found[2]
    assert found[1] is found[3]

    thor = "thor_916344178-sip-beta.example.com"
    repeated = {ring.get(thor).name for _ in range(3)}
    assert len(repeated) == 1
    assert all(ring.get(f"key-{i}") in nodes for i in range(50))
    assert ring.virtual_node_count() == len(nodes) * 100 * 3
    assert ring.node_count() == len(nodes)


def test_keys_spread_over_nodes():
    ring = ConsistentHash(100)
    ring.add_nodes(*_numbered_nodes(4))
    owners = {ring.get(f"conference-{i}").uuid for i in range(200)}
    assert len(owners) > 1


def test_delete_node():
    ring = ConsistentHash(100)
    ring.add_nodes(*_numbered_nodes(9))
    node = ring.get(str(random.randrange(1_000_000)) + "7000000")
    before = ring.virtual_node_count()
    ring.delete_node(node)
    assert before - ring.virtual_node_count() == 300
    assert ring.node_count() == 8
    assert not ring.exist_node(node)
    assert all(owner is not node for owner in ring.hash2node.values())


def test_add_nodes_errors():
    ring = ConsistentHash(10)
    with pytest.raises(ValueError, match="uuid is required"):
        ring.add_nodes(HashNode(uuid=""))
    with pytest.raises(ValueError, match="one node at least"):
        ring.add_nodes()
    ring.add_nodes(HashNode(uuid="a"))
    with pytest.raises(ValueError, match="already exists"):
        ring.add_nodes(HashNode(uuid="a"))
    assert ring.node_count() == 1


def test_get_and_delete_errors():
    ring = ConsistentHash(10)
    with pytest.raises(LookupError):
        ring.get("anything")
    with pytest.raises(LookupError, match="not found this node x"):
        ring.delete_node(HashNode(uuid="x", name="x"))
    with pytest.raises(ValueError):
        ring.delete_node(HashNode(uuid=""))


def test_module_level_ring():
    consistent.init(100)
    consistent.init(7)
    start_nodes = consistent.get_node_count()
    start_virtual = consistent.get_virtual_node_count()
    added = [HashNode(uuid=str(uuid.uuid4()), name=f"n{i}") for i in range(3)]
    consistent.add_nodes(*added)
    assert consistent.get_node_count() == start_nodes + 3
    assert consistent.get_virtual_node_count() == start_virtual + 3 * 100 * 3
    assert consistent.exist_node(added[0])
    assert consistent.get("some-key") is consistent.get("some-key")
    consistent.delete_nodes(added[0])
    assert not consistent.exist_node(added[0])
    assert consistent.get_node_count() == start_nodes + 2