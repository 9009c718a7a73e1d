import http.client
import platform
import re
import socket
import subprocess
from dataclasses import dataclass, field
from typing import Optional, Tuple

import requests
import urllib3
from scapy.all import IP, ICMP, sr1
from scapy.error import Scapy_Exception


PING_TIMEOUT = 1.0
PROBE_TIMEOUT = 3.0
HTTP_PORTS = (80, 443, 8000, 8080, 8443)
TLS_PORTS = (443, 8443)
SSH_PORT = 22
USER_AGENT = "scout"

_TTL_RE = re.compile(r"ttl\s*[=:\s]\s*(\d+)", re.IGNORECASE)

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


@dataclass(frozen=True)
class HostFingerprint:
    ttl_hint: Optional[str] = None
    service_banners: Tuple[str, ...] = field(default_factory=tuple)


def infer_os_from_ttl(ttl):
    """
    Map an observed TTL to the nearest common initial TTL.

    Returns (base, os_guess, hops). Hosts start at 64, 128 or 255 and every
    router on the way decrements the value by one.
    """
    if 1 <= ttl <= 64:
        base, os_guess = 64, "Linux/macOS/iOS-like"
    elif 65 <= ttl <= 128:
        base, os_guess = 128, "Windows-like"
    else:
        base, os_guess = 255, "network gear/other"
    return base, os_guess, max(0, base - ttl)


def format_ttl_hint(ttl):
    _, os_guess, hops = infer_os_from_ttl(ttl)
    if hops == 0:
        return f"{ttl} ({os_guess})"
    return f"{ttl} ({os_guess}, {hops} hop(s) away)"


def parse_ping_ttl(output):
    match = _TTL_RE.search(output or "")
    if not match:
        return None
    ttl = int(match.group(1))
    if ttl > 255:
        return None
    return ttl


def _ping_command(ip, timeout_seconds):
    if platform.system().lower() == "windows":
        return ["ping", "-n", "1", "-w", str(int(timeout_seconds * 1000)), ip]
    return ["ping", "-c", "1", "-W", str(max(1, int(timeout_seconds))), ip]


def ping_ttl(ip, timeout_seconds=PING_TIMEOUT):
    try:
        result = subprocess.run(
            _ping_command(str(ip), timeout_seconds),
            capture_output=True,
            text=True,
            timeout=timeout_seconds + 1.0,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return parse_ping_ttl(result.stdout)


def raw_icmp_ttl(ip, timeout_seconds=PING_TIMEOUT):
    """Single ICMP echo built with scapy; needs raw-socket privileges."""
    try:
        reply = sr1(IP(dst=str(ip)) / ICMP(), timeout=timeout_seconds, verbose=0)
    except (OSError, Scapy_Exception):
        return None
    if reply is None or not reply.haslayer(IP):
        return None
    return int(reply[IP].ttl)


TTL_METHODS = {
    "ping": ping_ttl,
    "raw": raw_icmp_ttl,
}


def ttl_hint(ip, method="ping", timeout_seconds=PING_TIMEOUT):
    ttl = TTL_METHODS[method](ip, timeout_seconds)
    if ttl is None:
        return None
    return format_ttl_hint(ttl)


def _status_line(response):
    version = {10: "HTTP/1.0", 11: "HTTP/1.1"}.get(getattr(response.raw, "version", None), "HTTP/1.1")
    return f"{version} {response.status_code} {response.reason or ''}".strip()


def _non_http_reply(exc):
    """First line of a reply http.client refused as a status line, if any."""
    seen = set()
    pending = [exc]
    while pending:
        err = pending.pop()
        if id(err) in seen:
            continue
        seen.add(id(err))
        if isinstance(err, http.client.BadStatusLine) and not isinstance(err, http.client.RemoteDisconnected):
            raw = str(err.args[0]) if err.args else ""
            lines = raw.strip().splitlines()
            return lines[0].strip() if lines else None
        pending.extend(a for a in err.args if isinstance(a, BaseException))
        pending.extend(e for e in (err.__cause__, err.__context__) if e is not None)
    return None


def http_banner(ip, port, timeout_seconds=PROBE_TIMEOUT):
    scheme = "https" if port in TLS_PORTS else "http"
    try:
        with requests.Session() as session:
            # Probe the host directly, never through an environment proxy.
            session.trust_env = False
            response = session.head(
                f"{scheme}://{ip}:{port}/",
                headers={"User-Agent": USER_AGENT, "Connection": "close"},
                timeout=(timeout_seconds, timeout_seconds),
                allow_redirects=False,
                verify=False,
            )
    except requests.ConnectionError as exc:
        # Non-HTTP services still answer with a first line worth keeping.
        line = _non_http_reply(exc)
        return f"HTTP:{port} {line}" if line else None
    except requests.RequestException:
        return None

    status = _status_line(response)
    server = response.headers.get("Server")
    if server:
        return f"HTTP:{port} {status} | Server: {server}"
    return f"HTTP:{port} {status}"


def ssh_banner(ip, port=SSH_PORT, timeout_seconds=PROBE_TIMEOUT):
    # SSH servers speak first; nothing is sent.
    try:
        with socket.create_connection((str(ip), port), timeout=timeout_seconds) as s:
            s.settimeout(timeout_seconds)
            data = s.recv(512)
    except OSError:
        return None
    banner = data.decode(errors="ignore").strip()
    if not banner:
        return None
    return f"SSH:{port} {banner}"


def service_banners(ip, open_ports, timeout_seconds=PROBE_TIMEOUT):
    banners = []
    for port in open_ports:
        if port in HTTP_PORTS:
            found = http_banner(ip, port, timeout_seconds)
            if found:
                banners.append(found)
    if SSH_PORT in open_ports:
        found = ssh_banner(ip, SSH_PORT, timeout_seconds)
        if found:
            banners.append(found)
    return banners


def fingerprint_host(ip, open_ports, ttl_method="ping"):
    """TTL hint plus HTTP/SSH banners for a host with at least one open port."""
    if not open_ports:
        return HostFingerprint()
    return HostFingerprint(
        ttl_hint=ttl_hint(ip, method=ttl_method),
        service_banners=tuple(service_banners(ip, list(open_ports))),
    )
