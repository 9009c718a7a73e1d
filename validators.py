from limits import MAX_IN_FLIGHT_CAP


MIN_PORT = 1
MAX_PORT = 65535


def _port(value, label="port"):
    try:
        port = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid {label}: {value}") from exc
    if port < MIN_PORT or port > MAX_PORT:
        raise ValueError(f"{label} out of bounds (1-65535): {value}")
    return port


def validate_port_range(start=None, end=None):
    """
    Defaults: 1..1024. Both ends are inclusive.
    """
    start = 1 if start is None else _port(start, "start_port")
    end = 1024 if end is None else _port(end, "end_port")
    if start > end:
        raise ValueError("start_port must be <= end_port")
    return start, end


def parse_port_list(text):
    """
    Supports:
    - list expression: "22,80,443"
    - ranges: "8000-8010,22"
    Returns sorted unique ports.
    """
    ports = set()
    chunks = [c.strip() for c in str(text or "").split(",") if c.strip()]
    if not chunks:
        raise ValueError("Empty port list")

    for chunk in chunks:
        if "-" in chunk:
            parts = [p.strip() for p in chunk.split("-", 1)]
            if not parts[0] or not parts[1]:
                raise ValueError(f"Invalid range segment: {chunk}")
            start, end = validate_port_range(parts[0], parts[1])
            ports.update(range(start, end + 1))
        else:
            ports.add(_port(chunk))
    return sorted(ports)


def validate_overrides(workers=None, timeout=None):
    if workers is not None and workers < 1:
        raise ValueError("--workers must be >= 1")
    if workers is not None and workers > MAX_IN_FLIGHT_CAP:
        raise ValueError(f"--workers must be <= {MAX_IN_FLIGHT_CAP}")
    if timeout is not None and timeout <= 0:
        raise ValueError("--timeout must be > 0")
