import dataclasses

import pytest
from pydantic import ValidationError

from k3sctl.modules.k3s.models import NetworkConfig, NodeRole, SizingConfig
from k3sctl.modules.k3s.topology import (
    TopologyError,
    allocate,
    generate_name,
    primary,
    role_for_vm_id,
    summarize,
)

from .conftest import sizing


def test_concrete_allocation():
    nodes = allocate(sizing(masters=1, workers=2))

    assert [n.name for n in nodes] == ["cluster-master", "cluster-worker-1", "cluster-worker-2"]
    assert [n.vm_id for n in nodes] == [100, 110, 111]
    assert [n.ipv4 for n in nodes] == ["10.10.0.20", "10.10.0.21", "10.10.0.22"]
    assert [n.ipv6 for n in nodes] == ["fd00:10::20", "fd00:10::21", "fd00:10::22"]
    assert [n.role for n in nodes] == [NodeRole.MASTER, NodeRole.WORKER, NodeRole.WORKER]


def test_ipv4_only_network_leaves_ipv6_empty():
    config = SizingConfig(network=NetworkConfig(net4_prefix="10.10.0.", ip_host_base=20), worker_count=1)
    nodes = allocate(config)

    assert [n.ipv4 for n in nodes] == ["10.10.0.20", "10.10.0.21"]
    assert [n.ipv6 for n in nodes] == ["", ""]


def test_allocation_is_deterministic():
    config = sizing(masters=3, workers=4)
    assert allocate(config) == allocate(config)


def test_global_index_formula():
    config = sizing(masters=3, workers=4)
    for node in allocate(config):
        expected = node.role_index if node.role == NodeRole.MASTER else config.master_count + node.role_index
        assert node.global_index == expected
        assert node.ipv4 == f"10.10.0.{20 + expected}"


def test_identities_are_unique():
    nodes = allocate(sizing(masters=5, workers=10))
    for key in ('vm_id', 'ipv4', 'ipv6', 'name'):
        values = [getattr(n, key) for n in nodes]
        assert len(values) == len(set(values)), key


def test_secondary_master_names():
    nodes = allocate(sizing(masters=3, workers=0))
    assert [n.name for n in nodes] == ["cluster-master", "cluster-master-2", "cluster-master-3"]
    assert [n.is_primary for n in nodes] == [True, False, False]
    assert primary(nodes).name == "cluster-master"


def test_name_prefix():
    assert generate_name(NodeRole.WORKER, 0, "lab") == "lab-worker-1"
    assert generate_name(NodeRole.MASTER, 1, "lab") == "lab-master-2"


def test_descriptors_are_immutable():
    node = allocate(sizing())[0]
    with pytest.raises(dataclasses.FrozenInstanceError):
        node.vm_id = 1


def test_zero_masters_rejected():
    with pytest.raises(ValidationError):
        sizing(masters=0)


def test_count_larger_than_id_block_rejected():
    with pytest.raises(ValidationError, match="exceeds id block"):
        sizing(masters=1, workers=11)


def test_overlapping_id_blocks_rejected():
    with pytest.raises(ValidationError, match="overlaps"):
        sizing(master_vmid_start=100, worker_vmid_start=105)


def test_ipv4_host_overflow_rejected():
    config = SizingConfig(
        master_count=1,
        worker_count=5,
        network=NetworkConfig(net4_prefix="10.0.0.", ip_host_base=250),
    )
    with pytest.raises(TopologyError, match="outside the usable range"):
        allocate(config)


def test_role_for_vm_id():
    config = sizing()
    assert role_for_vm_id(config, 100) == NodeRole.MASTER
    assert role_for_vm_id(config, 109) == NodeRole.MASTER
    assert role_for_vm_id(config, 110) == NodeRole.WORKER
    assert role_for_vm_id(config, 119) == NodeRole.WORKER
    assert role_for_vm_id(config, 120) is None
    assert role_for_vm_id(config, 99) is None


def test_summarize_groups_by_role():
    summary = summarize(allocate(sizing(masters=2, workers=1)))
    assert [m['name'] for m in summary['masters']] == ["cluster-master", "cluster-master-2"]
    assert summary['workers'][0] == {
        'name': "cluster-worker-1",
        'vm_id': 110,
        'ip': "10.10.0.22",
        'ipv6': "fd00:10::22",
        'cores': 2,
        'memory': 2048,
        'os_disk': 20,
        'data_disk': 60,
    }
