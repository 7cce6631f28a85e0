import logging

import pytest

from truenas_net_topology_lib import (
    CLASSIFICATION_RULES,
    InstanceType,
    InterfaceSnapshot,
    TopologyResolver,
    TopologySources,
    resolve_topology,
)
from truenas_net_topology_lib.docker.client import ContainerInfo, DockerNetwork
from truenas_net_topology_lib.host.vlan import VlanRecord
from truenas_net_topology_lib.topology import compute_bridge_vlans
from truenas_net_topology_lib.vm import VMLocator

from .test_utils import FakeDockerClient, FakeHost, FakeRunner, fake_host

GRAFANA_NETWORK = DockerNetwork(
    id="2c852816592c" + "a" * 52, name="ix-grafana_default", bridge_name="br-2c852816592c"
)


def snapshot_of(*interfaces: InterfaceSnapshot) -> dict[str, InterfaceSnapshot]:
    return {iface.name: iface for iface in interfaces}


def by_name(infos):
    return {info.name: info for info in infos}


def test_rules_end_with_catch_all():
    assert CLASSIFICATION_RULES[0].name == "loopback"
    assert CLASSIFICATION_RULES[-1].matches("anything-at-all")
    assert [rule.name for rule in CLASSIFICATION_RULES] == [
        "loopback", "veth", "vm-tap", "macvtap", "vlan", "bridge", "other"
    ]


def test_every_interface_is_classified_once():
    snapshot = snapshot_of(
        InterfaceSnapshot("lo"),
        InterfaceSnapshot("eno1", has_driver=True),
        InterfaceSnapshot("wg0"),
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("docker0"),
        InterfaceSnapshot("incusbr0"),
        InterfaceSnapshot("veth1", bridge="docker0"),
        InterfaceSnapshot("vnet0", bridge="br0"),
        InterfaceSnapshot("macvtap0"),
        InterfaceSnapshot("vlan10"),
    )
    infos = resolve_topology(snapshot, TopologySources())

    assert sorted(info.name for info in infos) == sorted(snapshot)
    assert all(isinstance(info.instance_type, InstanceType) for info in infos)
    types = {info.name: info.instance_type for info in infos}
    assert types == {
        "lo": InstanceType.LOOPBACK,
        "eno1": InstanceType.PHYSICAL,
        "wg0": InstanceType.UNKNOWN,
        "br0": InstanceType.BRIDGE,
        "docker0": InstanceType.BRIDGE,
        "incusbr0": InstanceType.BRIDGE,
        "veth1": InstanceType.DOCKER,
        "vnet0": InstanceType.VM,
        "macvtap0": InstanceType.MACVTAP,
        "vlan10": InstanceType.VLAN,
    }


def test_loopback():
    info = resolve_topology(snapshot_of(InterfaceSnapshot("lo", state="unknown")), TopologySources())[0]
    assert (info.instance, info.app, info.vlan, info.state) == ("loopback", "system", "", "unknown")


def test_vlan_inheritance_through_bridge():
    snapshot = snapshot_of(
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("vlan7", bridge="br0"),
        InterfaceSnapshot("vnet0", bridge="br0"),
        InterfaceSnapshot("veth77", bridge="br0"),
        InterfaceSnapshot("eno2", bridge="br0", has_driver=True),
        InterfaceSnapshot("eno1", has_driver=True),
        InterfaceSnapshot("br1"),
        InterfaceSnapshot("vnet1", bridge="br1"),
    )
    sources = TopologySources(vlans={"vlan7": VlanRecord(name="vlan7", vlan_id="7", parent="eno1")})

    infos = by_name(resolve_topology(snapshot, sources))

    assert infos["br0"].vlan == "7"
    assert infos["vlan7"].vlan == "7"
    assert infos["vnet0"].vlan == "7"
    assert infos["veth77"].vlan == "7"
    assert infos["eno2"].vlan == "7"
    assert infos["eno1"].vlan == ""
    assert infos["br1"].vlan == ""
    assert infos["vnet1"].vlan == ""
    assert infos["vnet0"].bridge == "br0"


def test_dot_notation_vlan_member():
    snapshot = snapshot_of(
        InterfaceSnapshot("br5"),
        InterfaceSnapshot("eno1.5", bridge="br5"),
        InterfaceSnapshot("vnet2", bridge="br5"),
    )
    sources = TopologySources(vlans={"eno1.5": VlanRecord(name="eno1.5", vlan_id="5", parent="eno1")})

    infos = by_name(resolve_topology(snapshot, sources))

    assert infos["eno1.5"].instance_type == InstanceType.VLAN
    assert infos["eno1.5"].vlan == "5"
    assert infos["vnet2"].vlan == "5"


def test_several_vlan_members_lowest_id_wins():
    snapshot = snapshot_of(
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("vlan30", bridge="br0"),
        InterfaceSnapshot("vlan4", bridge="br0"),
    )
    vlans = {
        "vlan30": VlanRecord(name="vlan30", vlan_id="30"),
        "vlan4": VlanRecord(name="vlan4", vlan_id="4"),
    }
    assert compute_bridge_vlans(snapshot, vlans) == {"br0": "4"}


def test_nested_bridges_are_not_transitive():
    snapshot = snapshot_of(
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("br1", bridge="br0"),
        InterfaceSnapshot("vlan9", bridge="br0"),
        InterfaceSnapshot("vnet0", bridge="br1"),
    )
    sources = TopologySources(vlans={"vlan9": VlanRecord(name="vlan9", vlan_id="9")})

    infos = by_name(resolve_topology(snapshot, sources))

    assert infos["br0"].vlan == "9"
    assert infos["br1"].vlan == ""
    assert infos["vnet0"].vlan == ""


def test_macvtap_does_not_inherit_vlan():
    snapshot = snapshot_of(
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("vlan7", bridge="br0"),
        InterfaceSnapshot("macvtap0", bridge="br0"),
    )
    sources = TopologySources(
        vlans={"vlan7": VlanRecord(name="vlan7", vlan_id="7")},
        iface_to_vm={"macvtap0": "truenas-backup"},
    )

    info = by_name(resolve_topology(snapshot, sources))["macvtap0"]

    assert info.vlan == ""
    assert (info.instance, info.app) == ("truenas-backup", "truenas-backup")


def test_veth_container_beats_incus():
    container = ContainerInfo(
        id="c1", name="ix-grafana-grafana-1", pid=42,
        labels={"com.docker.compose.project": "ix-grafana"},
    )
    snapshot = snapshot_of(InterfaceSnapshot("veth1a2b3c", bridge="br-2c852816592c"),
                           InterfaceSnapshot("br-2c852816592c"))
    sources = TopologySources(
        veth_to_container={"veth1a2b3c": container},
        veth_to_incus={"veth1a2b3c": "backupserver"},
    )

    info = by_name(resolve_topology(snapshot, sources))["veth1a2b3c"]

    assert info.instance_type == InstanceType.DOCKER
    assert info.instance == "ix-grafana-grafana-1"
    assert info.app == "grafana"


def test_veth_incus_match():
    snapshot = snapshot_of(InterfaceSnapshot("veth5d6e", bridge="incusbr0"), InterfaceSnapshot("incusbr0"))
    sources = TopologySources(veth_to_incus={"veth5d6e": "backupserver"})

    infos = by_name(resolve_topology(snapshot, sources))

    assert infos["veth5d6e"].instance_type == InstanceType.INCUS
    assert (infos["veth5d6e"].instance, infos["veth5d6e"].app) == ("backupserver", "backupserver")
    assert (infos["incusbr0"].instance, infos["incusbr0"].app) == ("incusbr0", "system")


def test_orphan_veth_named_after_bridge_network():
    snapshot = snapshot_of(
        InterfaceSnapshot("br-2c852816592c"),
        InterfaceSnapshot("veth0ff1ce", bridge="br-2c852816592c"),
    )
    sources = TopologySources(bridge_to_network={"br-2c852816592c": GRAFANA_NETWORK})

    info = by_name(resolve_topology(snapshot, sources))["veth0ff1ce"]

    assert info.instance_type == InstanceType.DOCKER
    assert info.instance == "veth0ff1ce"
    assert info.app == "grafana"


def test_bridge_naming():
    snapshot = snapshot_of(
        InterfaceSnapshot("br-2c852816592c"),
        InterfaceSnapshot("br-000000000000"),
        InterfaceSnapshot("br0"),
    )
    sources = TopologySources(bridge_to_network={"br-2c852816592c": GRAFANA_NETWORK})

    infos = by_name(resolve_topology(snapshot, sources))

    assert infos["br-2c852816592c"].instance == "ix-grafana_default"
    assert infos["br-2c852816592c"].app == "grafana"
    assert (infos["br-000000000000"].instance, infos["br-000000000000"].app) == ("br-000000000000", "")
    assert (infos["br0"].instance, infos["br0"].app) == ("br0", "system")


def test_vm_tap_fallback_to_raw_name():
    snapshot = snapshot_of(InterfaceSnapshot("vnet0"), InterfaceSnapshot("vnet1"))
    sources = TopologySources(iface_to_vm={"vnet1": "homeassistant"})

    infos = by_name(resolve_topology(snapshot, sources))

    assert (infos["vnet0"].instance, infos["vnet0"].app) == ("vnet0", "")
    assert (infos["vnet1"].instance, infos["vnet1"].app) == ("homeassistant", "homeassistant")


def test_resolution_is_idempotent():
    snapshot = snapshot_of(
        InterfaceSnapshot("br0"),
        InterfaceSnapshot("vlan7", bridge="br0"),
        InterfaceSnapshot("veth1", bridge="br0"),
        InterfaceSnapshot("vlan8", bridge="br0"),
        InterfaceSnapshot("eno1", has_driver=True),
    )
    sources = TopologySources(
        vlans={
            "vlan8": VlanRecord(name="vlan8", vlan_id="8"),
            "vlan7": VlanRecord(name="vlan7", vlan_id="7"),
        }
    )

    assert resolve_topology(snapshot, sources) == resolve_topology(snapshot, sources)


def build_docker_host(fake_host: FakeHost) -> None:
    fake_host.add_interface("lo", 1, operstate="unknown")
    fake_host.add_interface("eno1", 2, driver=True)
    fake_host.add_interface("br-2c852816592c", 3)
    fake_host.add_interface("veth9f3c1e2", 17, master="br-2c852816592c")
    fake_host.add_interface("vethdead01", 18, master="br-2c852816592c", operstate="down")
    fake_host.add_interface("veth5d6e", 19, master="incusbr0")
    fake_host.add_interface("incusbr0", 4)
    fake_host.add_interface("br0", 5)
    fake_host.add_interface("vlan7", 6, master="br0")
    fake_host.add_interface("vnet0", 20, master="br0")
    fake_host.add_interface("macvtap0", 25)
    # master outside the interface set is dropped
    fake_host.add_interface("wg0", 30, master="ghostbr")
    fake_host.write_vlan_config([("vlan7", 7, "eno1")])

    # docker container and incus container network namespaces
    fake_host.add_process(4242)
    fake_host.add_netns(4242, {"lo": 1, "eth0": 17})
    fake_host.add_process(5150, "0::/lxc.payload.backupserver/init.scope\n")
    fake_host.add_netns(5150, {"lo": 1, "eth0": 19})

    # QEMU process with a tap and a macvtap
    fake_host.add_fds(7001, {12: "/dev/net/tun", 13: "/dev/tap25"}, fdinfo={12: "iff:\tvnet0\n"})


def midclt_runner(fake_host: FakeHost) -> FakeRunner:
    return FakeRunner(
        {
            ("chroot", str(fake_host.root), "midclt", "call", "vm.query"): (
                '[{"name": "homeassistant", "status": {"state": "RUNNING", "pid": 7001}}]'
            )
        }
    )


@pytest.mark.asyncio
async def test_resolver_full_pass(fake_host: FakeHost):
    build_docker_host(fake_host)
    grafana = ContainerInfo(
        id="c1", name="ix-grafana-grafana-1", pid=4242,
        labels={"com.docker.compose.project": "ix-grafana"},
    )
    resolver = TopologyResolver(
        fake_host.options,
        docker_client_factory=lambda: FakeDockerClient(containers=[grafana], networks=[GRAFANA_NETWORK]),  # type: ignore
        vm_locator=VMLocator(fake_host.options, midclt_runner(fake_host)),
    )

    resolved = await resolver.resolve()
    infos = {r.info.name: r.info for r in resolved}

    assert sorted(infos) == sorted(
        ["lo", "eno1", "br-2c852816592c", "veth9f3c1e2", "vethdead01", "veth5d6e",
         "incusbr0", "br0", "vlan7", "vnet0", "macvtap0", "wg0"]
    )
    assert (infos["veth9f3c1e2"].instance, infos["veth9f3c1e2"].app) == ("ix-grafana-grafana-1", "grafana")
    assert infos["veth9f3c1e2"].bridge == "br-2c852816592c"
    assert (infos["vethdead01"].instance, infos["vethdead01"].app) == ("vethdead01", "grafana")
    assert infos["vethdead01"].state == "down"
    assert infos["veth5d6e"].instance_type == InstanceType.INCUS
    assert infos["br-2c852816592c"].instance == "ix-grafana_default"
    assert (infos["vnet0"].instance, infos["vnet0"].vlan) == ("homeassistant", "7")
    assert infos["macvtap0"].instance == "homeassistant"
    assert infos["br0"].vlan == "7"
    assert infos["eno1"].instance_type == InstanceType.PHYSICAL
    assert infos["wg0"].bridge == ""
    assert infos["wg0"].instance_type == InstanceType.UNKNOWN

    counters = {r.info.name: r.counters for r in resolved}
    assert counters["eno1"].rx_bytes == 100
    assert counters["eno1"].tx_bytes == 200


@pytest.mark.asyncio
async def test_resolver_docker_down(fake_host: FakeHost):
    build_docker_host(fake_host)
    resolver = TopologyResolver(
        fake_host.options,
        docker_client_factory=lambda: FakeDockerClient(available=False),  # type: ignore
        vm_locator=VMLocator(fake_host.options, FakeRunner({})),
    )

    infos = {r.info.name: r.info for r in await resolver.resolve()}

    for name in ("veth9f3c1e2", "vethdead01"):
        assert infos[name].instance_type == InstanceType.DOCKER
        assert infos[name].instance == name
        assert infos[name].app == ""
    # unrelated sources are unaffected
    assert infos["veth5d6e"].instance == "backupserver"
    # no VM tooling either: raw names
    assert infos["vnet0"].instance == "vnet0"
    assert infos["vnet0"].vlan == "7"


class BrokenDockerClient(FakeDockerClient):
    async def available(self) -> bool:
        raise OSError("Connection reset by peer")


@pytest.mark.asyncio
async def test_resolver_failing_source_logged_at_debug(fake_host: FakeHost, caplog):
    build_docker_host(fake_host)
    resolver = TopologyResolver(
        fake_host.options,
        docker_client_factory=lambda: BrokenDockerClient(),  # type: ignore
        vm_locator=VMLocator(fake_host.options, FakeRunner({})),
    )

    with caplog.at_level(logging.DEBUG):
        infos = {r.info.name: r.info for r in await resolver.resolve()}

    assert infos["veth9f3c1e2"].instance == "veth9f3c1e2"
    degraded = [r for r in caplog.records if "docker unavailable" in r.getMessage()]
    assert [r.levelno for r in degraded] == [logging.DEBUG]


@pytest.mark.asyncio
async def test_resolver_without_counters(tmp_path):
    host = FakeHost(tmp_path / "host")
    (host.host_net / "dev").unlink(missing_ok=True)
    resolver = TopologyResolver(host.options, vm_locator=VMLocator(host.options, FakeRunner({})))

    with pytest.raises(FileNotFoundError):
        await resolver.resolve()
