import ipaddress
import math
import socket
from typing import List, NamedTuple

import psutil


DISCOVERY_PORTS = (22, 23, 53, 80, 139, 443, 445, 631, 8000, 8080, 8443)
MAX_HOSTS_PER_NETWORK = 1024


class LocalSubnet(NamedTuple):
    interface: str
    address: ipaddress.IPv4Address
    network: ipaddress.IPv4Network


def _narrow(address, network, max_hosts):
    if not max_hosts or network.num_addresses - 2 <= max_hosts:
        return network
    prefix = max(network.prefixlen, 32 - math.floor(math.log2(max_hosts + 2)))
    return ipaddress.IPv4Network(f"{address}/{prefix}", strict=False)


def local_ipv4_networks(max_hosts=MAX_HOSTS_PER_NETWORK) -> List[LocalSubnet]:
    """IPv4 subnets of every non-loopback interface, sorted by network."""
    found = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                address = ipaddress.IPv4Address(addr.address)
                network = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
            if address.is_loopback or address.is_link_local:
                continue
            found.append(LocalSubnet(name, address, _narrow(address, network, max_hosts)))
    return sorted(found, key=lambda s: (s.network, s.address))


def discovery_hosts(subnets):
    own = {s.address for s in subnets}
    hosts = set()
    for subnet in subnets:
        hosts.update(h for h in subnet.network.hosts() if h not in own)
    return sorted(hosts)
