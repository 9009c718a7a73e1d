import ipaddress
from typing import Iterable, List, NamedTuple


class UnsupportedTarget(ValueError):
    pass


class EmptyTargetSet(ValueError):
    pass


class WorkItem(NamedTuple):
    host: ipaddress.IPv4Address
    port: int


def parse_target_hosts(target):
    """
    Supports:
    - single IPv4 address: "10.0.0.5"
    - IPv4 CIDR block: "192.168.1.0/30" (usable hosts only)
    Domain names are rejected, no DNS lookup is made.
    """
    text = (target or "").strip()
    try:
        return [ipaddress.IPv4Address(text)]
    except ValueError:
        pass

    try:
        network = ipaddress.IPv4Network(text, strict=False)
    except ValueError as exc:
        raise UnsupportedTarget(f"Unsupported target (expected IPv4 or CIDR): {target!r}") from exc
    return list(network.hosts())


def build_scan_items(hosts: Iterable, ports: Iterable[int]) -> List[WorkItem]:
    # host-major, port-minor
    port_list = list(ports)
    items = [WorkItem(ipaddress.IPv4Address(host), int(port)) for host in hosts for port in port_list]
    if not items:
        raise EmptyTargetSet("No items to scan")
    return items


def build_target_scan_items(target, start, end) -> List[WorkItem]:
    hosts = parse_target_hosts(target)
    return build_scan_items(hosts, range(start, end + 1))
