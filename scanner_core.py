import queue
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

from targets import EmptyTargetSet


CONNECT_TIMEOUT = 0.5

_END_OF_STREAM = object()


class ScanResult(NamedTuple):
    host: object
    port: int
    open: bool


def probe_port(host, port, timeout_seconds=CONNECT_TIMEOUT):
    """TCP connect within the deadline means open; refused, unreachable and timeout all mean closed."""
    try:
        with socket.create_connection((str(host), port), timeout=timeout_seconds):
            return True
    except OSError:
        return False


class ScanStream:
    """
    Results of one scan, in completion order.

    Iterating blocks until the next result is published and stops once every
    dispatched task has published exactly one result. A consumer that stops
    early must call ``close()`` (or use the stream as a context manager) so
    the workers blocked on a full channel are released.
    """

    def __init__(self, total, channel, producers, pool):
        self.total = total
        self._channel = channel
        self._producers = producers
        self._pool = pool
        self._exhausted = False

    def __iter__(self):
        return self

    def __next__(self):
        if self._exhausted:
            raise StopIteration
        item = self._channel.get()
        if item is _END_OF_STREAM:
            self._exhausted = True
            raise StopIteration
        return item

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        """Drop queued work and unblock running tasks; returns once no task is running."""
        if self._exhausted:
            return
        self._exhausted = True
        self._producers.close()
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._producers.drain()


class _Producers:
    """
    Tracks producers that have not published yet; the last one closes the channel.

    After ``close()`` results are dropped instead of published.
    """

    def __init__(self, count, channel):
        self._count = count
        self._running = 0
        self._closed = False
        self._channel = channel
        self._lock = threading.Condition()

    def start(self):
        with self._lock:
            if self._closed:
                return False
            self._running += 1
            return True

    def publish(self, result):
        try:
            if self._is_closed():
                return
            # Blocks while the channel is full.
            self._channel.put(result)
            with self._lock:
                self._count -= 1
                last = self._count == 0 and not self._closed
            if last:
                self._channel.put(_END_OF_STREAM)
        finally:
            with self._lock:
                self._running -= 1
                self._lock.notify_all()

    def _is_closed(self):
        with self._lock:
            return self._closed

    def close(self):
        with self._lock:
            self._closed = True

    def _discard(self):
        while True:
            try:
                self._channel.get_nowait()
            except queue.Empty:
                return

    def drain(self):
        while True:
            self._discard()
            with self._lock:
                if self._running == 0:
                    break
                self._lock.wait(0.05)
        self._discard()


def spawn(scan_items, budget, timeout_seconds=CONNECT_TIMEOUT, prober=probe_port):
    items = list(scan_items)
    total = len(items)
    if total == 0:
        raise EmptyTargetSet("No items to scan")

    channel = queue.Queue(maxsize=budget.channel_capacity)
    # One pool thread per admission slot, so the pool size is the effective
    # in-flight limit; the semaphore bounds the probe section itself.
    slots = threading.BoundedSemaphore(budget.max_in_flight)
    producers = _Producers(total, channel)

    def scan_one(host, port):
        if not producers.start():
            return
        try:
            with slots:
                is_open = bool(prober(host, port, timeout_seconds))
        except Exception:
            is_open = False
        producers.publish(ScanResult(host, port, is_open))

    pool = ThreadPoolExecutor(max_workers=budget.max_in_flight, thread_name_prefix="scan")
    for host, port in items:
        pool.submit(scan_one, host, port)
    # Workers exit once the queue of submitted tasks is drained.
    pool.shutdown(wait=False)

    return ScanStream(total, channel, producers, pool)


def scan(scan_items, budget, timeout_seconds=CONNECT_TIMEOUT, prober=probe_port):
    with spawn(scan_items, budget, timeout_seconds=timeout_seconds, prober=prober) as stream:
        return list(stream)


def group_open_ports(results):
    hosts = {}
    for host, port, is_open in results:
        if is_open:
            hosts.setdefault(host, set()).add(port)
    return {host: sorted(hosts[host]) for host in sorted(hosts)}
