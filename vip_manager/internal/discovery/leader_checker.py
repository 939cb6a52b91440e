import logging
import queue
import threading

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 1  # seconds
DEFAULT_WAIT_TIME = 30  # seconds
DELIVERY_POLL_INTERVAL = 0.2  # seconds


class UnknownDCSTypeError(ValueError):
    pass


def parse_endpoint(endpoint, default_port):
    """Splits 'http://host:port' or 'host:port' into (scheme, host, port)."""
    scheme = 'http'
    netloc = endpoint.strip()
    if '//' in netloc:
        scheme, netloc = netloc.split('//', 1)
        scheme = scheme.rstrip(':') or 'http'
    netloc = netloc.rstrip('/')
    if ':' in netloc:
        host, port_str = netloc.rsplit(':', 1)
        return scheme, host, int(port_str)
    return scheme, netloc, default_port


class LeaderChecker:
    """Watches the leader marker and publishes "this node is leader" booleans.

    Subclasses implement ``get_change_notification_stream``; the stream of
    booleans is the only thing the IP manager sees of the coordination store.
    """

    def __init__(self, key: str, nodename: str, retry_after: float = DEFAULT_RETRY_AFTER, wait_time: float = DEFAULT_WAIT_TIME):
        self.key = key
        self.nodename = nodename
        self.retry_after = retry_after
        self.wait_time = wait_time

    def get_change_notification_stream(self, stop_event: threading.Event, out: queue.Queue) -> None:
        raise NotImplementedError

    def _publish(self, stop_event: threading.Event, out: queue.Queue, state: bool) -> bool:
        """Hands ``state`` to the consumer, giving up once a stop is requested."""
        while not stop_event.is_set():
            try:
                out.put(state, timeout=DELIVERY_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False


def new_leader_checker(app_config, vip_config) -> LeaderChecker:
    dcs_type = app_config.get_dcs_type()
    common = dict(
        key=vip_config.trigger_key,
        nodename=vip_config.nodename,
        retry_after=app_config.get_retry_after(),
        wait_time=app_config.get_wait_time(),
    )
    if dcs_type == 'etcd':
        from .etcd_client import EtcdLeaderChecker
        user, password = app_config.get_etcd_credentials()
        return EtcdLeaderChecker(app_config.get_dcs_endpoints(), user=user, password=password, **common)
    if dcs_type == 'consul':
        from .consul_client import ConsulLeaderChecker
        return ConsulLeaderChecker(app_config.get_dcs_endpoints(), token=app_config.get_consul_token(), **common)
    raise UnknownDCSTypeError(f"Unknown DCS type '{dcs_type}'. Expected 'etcd' or 'consul'.")
