import argparse
import json
import os
import sys
import time

from enrichment import TTL_METHODS, fingerprint_host
from limits import budget_for, detect_cpus
from scanner_core import CONNECT_TIMEOUT, group_open_ports, spawn
from subnets import DISCOVERY_PORTS, discovery_hosts, local_ipv4_networks
from targets import build_scan_items, build_target_scan_items
from validators import parse_port_list, validate_overrides, validate_port_range


class C:
    RESET = "\033[0m"
    GREEN = "\033[92m"
    CYAN = "\033[96m"
    YELLOW = "\033[93m"
    RED = "\033[91m"


STYLE_ENABLED = True
QUIET = False
TOOL_NAME = "scout"
COMMANDS = ("probe", "networks", "discover")


def paint(text, color):
    if not STYLE_ENABLED:
        return text
    return f"{color}{text}{C.RESET}"


def progress_bar(done, total, width=36):
    if total <= 0:
        return "[------------------------------------] 0.0%"
    ratio = min(max(done / total, 0.0), 1.0)
    fill = int(width * ratio)
    bar = "#" * fill + "-" * (width - fill)
    return f"[{bar}] {ratio * 100:5.1f}% ({done}/{total})"


def log_line(level, message):
    if QUIET and level == "INFO":
        return
    color = C.GREEN
    if level == "WARN":
        color = C.YELLOW
    elif level == "ERR":
        color = C.RED
    print(paint(f"[{level}] {message}", color), file=sys.stderr if level == "ERR" else sys.stdout)


class Progress:
    def __init__(self, total, label):
        self.total = total
        self.label = label
        self.done = 0
        self.enabled = sys.stdout.isatty() and not QUIET
        self._last_draw = 0.0

    def step(self):
        self.done += 1
        if not self.enabled:
            return
        now = time.time()
        if now - self._last_draw >= 0.06 or self.done == self.total:
            print(paint(f"{self.label} {progress_bar(self.done, self.total)}", C.CYAN), end="\r")
            self._last_draw = now

    def finish(self):
        if self.enabled:
            print(" " * 100, end="\r")


def collect(stream, label):
    progress = Progress(stream.total, label)

    def counted():
        for result in stream:
            progress.step()
            yield result

    try:
        grouped = group_open_ports(counted())
    finally:
        stream.close()
        progress.finish()
    return grouped


def format_probe_table(grouped):
    lines = ["HOST              OPEN PORTS"]
    for host, ports in grouped.items():
        lines.append(f"{str(host):<17} {', '.join(str(p) for p in ports)}")
    return "\n".join(lines)


def format_results_table(rows):
    lines = ["HOST              PORTS                 TTL / OS HINT                         SERVICES"]
    for host, ports, fp in rows:
        port_text = ",".join(str(p) for p in ports)
        banners = "; ".join(fp.service_banners) or "-"
        lines.append(f"{str(host):<17} {port_text:<21} {(fp.ttl_hint or '-'):<37} {banners}")
    return "\n".join(lines)


def fingerprint_all(grouped, ttl_method):
    rows = []
    progress = Progress(len(grouped), "Fingerprinting...")
    for host, ports in grouped.items():
        rows.append((host, ports, fingerprint_host(host, ports, ttl_method=ttl_method)))
        progress.step()
    progress.finish()
    return rows


def export_json(path, rows):
    parent = os.path.dirname(os.path.abspath(path))
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    payload = [
        {
            "host": str(host),
            "open_ports": ports,
            "ttl_hint": fp.ttl_hint if fp else None,
            "services": list(fp.service_banners) if fp else [],
        }
        for host, ports, fp in rows
    ]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    log_line("INFO", f"JSON saved -> {path}")


def _budget(args):
    budget = budget_for(detect_cpus(), workers=args.workers)
    log_line("INFO", f"Concurrency: {budget.max_in_flight} in flight, channel {budget.channel_capacity}")
    return budget


def run_probe(args):
    start, end = validate_port_range(args.start, args.end)
    scan_items = build_target_scan_items(args.target, start, end)
    budget = _budget(args)

    started = time.time()
    stream = spawn(scan_items, budget, timeout_seconds=args.timeout)
    log_line("INFO", f"Target: {args.target} | Ports: {start}-{end} | Probes: {stream.total}")
    grouped = collect(stream, "Probing targets...")

    if not grouped:
        print("No ports found")
        return []

    print()
    print(format_probe_table(grouped))
    rows = [(host, ports, None) for host, ports in grouped.items()]
    if args.fingerprint:
        rows = fingerprint_all(grouped, args.ttl_method)
        print()
        print(format_results_table(rows))
    print()
    print(f"Elapsed time: {time.time() - started:.2f}s")
    return rows


def run_networks(args):
    subnets = local_ipv4_networks()
    if not subnets:
        print("No local IPv4 subnets detected.")
        return subnets
    for subnet in subnets:
        print(f"- {subnet.network} ({subnet.interface}, {subnet.address})")
    return subnets


def run_discover(args):
    subnets = run_networks(args)
    print()
    ports = parse_port_list(args.ports) if args.ports else list(DISCOVERY_PORTS)
    scan_items = build_scan_items(discovery_hosts(subnets), ports)
    budget = _budget(args)

    stream = spawn(scan_items, budget, timeout_seconds=args.timeout)
    grouped = collect(stream, "Finding live hosts...")
    if not grouped:
        print("No live hosts found on discovered subnets.")
        return []

    rows = fingerprint_all(grouped, args.ttl_method)
    print()
    print(format_results_table(rows))
    return rows


def run(args):
    global STYLE_ENABLED, QUIET
    STYLE_ENABLED = (not args.no_color) and ("NO_COLOR" not in os.environ)
    QUIET = args.quiet
    validate_overrides(args.workers, args.timeout)

    rows = args.handler(args)
    if args.json_out and args.handler is not run_networks:
        export_json(args.json_out, rows)


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--workers", type=int, default=None, help="Override max in-flight probes. Default: 64 per CPU, capped at 4096.")
    common.add_argument("--timeout", type=float, default=CONNECT_TIMEOUT, help=f"Per-port connect timeout seconds. Default: {CONNECT_TIMEOUT}.")
    common.add_argument("--ttl-method", choices=sorted(TTL_METHODS), default="ping", help="TTL probe: system ping or raw ICMP via scapy (needs privileges).")
    common.add_argument("--json-out", default="", help="Write results as JSON to file path.")
    common.add_argument("--quiet", action="store_true", help="Reduce log verbosity.")
    common.add_argument("--no-color", action="store_true", help="Disable ANSI colors in output.")

    p = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description="scout: fast TCP discovery and host fingerprinting for IPv4 targets.",
        epilog="Options go after the subcommand. Without one, discover runs.",
    )
    sub = p.add_subparsers(dest="command")

    probe = sub.add_parser("probe", parents=[common], help="Scan a port range on an IPv4 address or CIDR block.")
    probe.add_argument("target", help="IPv4 address or CIDR (example: 192.168.55.42, 192.168.55.0/24).")
    probe.add_argument("start", nargs="?", type=int, default=None, help="Starting port (default: 1).")
    probe.add_argument("end", nargs="?", type=int, default=None, help="Ending port (default: 1024).")
    probe.add_argument("--fingerprint", action="store_true", help="Fingerprint hosts with open ports.")
    probe.set_defaults(handler=run_probe)

    networks = sub.add_parser("networks", parents=[common], help="List local IPv4 subnets.")
    networks.set_defaults(handler=run_networks)

    discover = sub.add_parser("discover", parents=[common], help="Discover and fingerprint hosts on local subnets (default).")
    discover.add_argument("--ports", default="", help="Discovery ports, comma separated. Default: common device ports.")
    discover.set_defaults(handler=run_discover)
    return p


def main(argv=None):
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS + ("-h", "--help"):
        argv = ["discover"] + argv
    args = parser.parse_args(argv)
    try:
        run(args)
    except KeyboardInterrupt:
        log_line("WARN", "Interrupted by user.")
        raise SystemExit(130)
    except Exception as exc:
        log_line("ERR", str(exc))
        raise SystemExit(1)
    return 0


if __name__ == "__main__":
    main()
