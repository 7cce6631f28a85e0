from typing import Iterable

from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from prometheus_client.core import CounterMetricFamily, Metric
from prometheus_client.registry import Collector

from truenas_net_topology_lib import InterfaceInfo, ResolvedInterface

LABELS = ["interface", "instance", "instance_type", "app", "bridge", "vlan", "state"]

# counter attribute, metric name, help
COUNTERS = (
    ("rx_bytes", "net_interface_rx_bytes_total", "Total bytes received on this interface."),
    ("tx_bytes", "net_interface_tx_bytes_total", "Total bytes transmitted on this interface."),
    ("rx_packets", "net_interface_rx_packets_total", "Total packets received on this interface."),
    ("tx_packets", "net_interface_tx_packets_total", "Total packets transmitted on this interface."),
    ("rx_errors", "net_interface_rx_errors_total", "Total receive errors on this interface."),
    ("tx_errors", "net_interface_tx_errors_total", "Total transmit errors on this interface."),
    ("rx_dropped", "net_interface_rx_dropped_total", "Total received packets dropped on this interface."),
    ("tx_dropped", "net_interface_tx_dropped_total", "Total transmitted packets dropped on this interface."),
)


def label_values(info: InterfaceInfo) -> list[str]:
    return [
        info.name,
        info.instance,
        info.instance_type.value,
        info.app,
        info.bridge,
        info.vlan,
        info.state,
    ]


class NetworkCollector(Collector):
    """Exposes the interfaces of one resolution pass."""

    def __init__(self, interfaces: list[ResolvedInterface]) -> None:
        self._interfaces = interfaces

    def collect(self) -> Iterable[Metric]:
        for attribute, name, documentation in COUNTERS:
            family = CounterMetricFamily(name, documentation, labels=LABELS)
            for resolved in self._interfaces:
                family.add_metric(
                    label_values(resolved.info), getattr(resolved.counters, attribute)
                )
            yield family


def render_metrics(interfaces: list[ResolvedInterface]) -> bytes:
    """a fresh registry per scrape, nothing survives the request"""
    registry = CollectorRegistry()
    GCCollector(registry=registry)
    PlatformCollector(registry=registry)
    ProcessCollector(registry=registry)
    registry.register(NetworkCollector(interfaces))
    return generate_latest(registry)
