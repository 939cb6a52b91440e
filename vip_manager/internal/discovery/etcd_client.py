import logging
import queue
import threading

import etcd3

from .leader_checker import LeaderChecker, parse_endpoint

logger = logging.getLogger(__name__)

ETCD_DEFAULT_PORT = 2379


class EtcdLeaderChecker(LeaderChecker):
    def __init__(self, etcd_endpoints, key, nodename, user=None, password=None, client=None, **kwargs):
        """
        Initializes the EtcdLeaderChecker.
        Args:
            etcd_endpoints (list): List of etcd server endpoints (e.g., ['http://localhost:2379']).
            key (str): Key holding the name of the current leader.
            nodename (str): Value of the key when this node is the leader.
            user (str, optional): etcd user for authentication.
            password (str, optional): etcd password for authentication.
            client (etcd3.Etcd3Client, optional): Pre-built client, used instead of connecting.
        """
        super().__init__(key, nodename, **kwargs)
        self.user = user
        self.password = password

        self.etcd_endpoints = []
        for endpoint in etcd_endpoints:
            try:
                _, host, port = parse_endpoint(endpoint, ETCD_DEFAULT_PORT)
                self.etcd_endpoints.append((host, port))
            except ValueError:
                logger.warning(f"Invalid etcd endpoint format: {endpoint}. Expected 'http://host:port'. Skipping.")

        if not self.etcd_endpoints:
            logger.error("No valid etcd endpoints provided. Falling back to localhost:2379.")
            self.etcd_endpoints.append(('localhost', ETCD_DEFAULT_PORT))

        self.etcd = client
        if self.etcd is None:
            self._connect()

    def _connect(self):
        auth = f" as user '{self.user}'" if self.user else ''
        errors = []

        for host, port in self.etcd_endpoints:
            try:
                # with credentials set, construction itself authenticates and fails on a bad password
                client = etcd3.client(host=host, port=port, user=self.user, password=self.password)
                status = client.status()
            except Exception as e:
                errors.append(f"{host}:{port}: {e}")
                logger.warning(f"etcd endpoint {host}:{port} unusable{auth}: {e}")
                continue

            self.etcd = client
            logger.info(f"Watching key {self.key} through etcd {host}:{port}{auth} (server version {getattr(status, 'version', 'unknown')})")
            return

        logger.error(f"No etcd endpoint usable{auth}: {'; '.join(errors)}")
        self.etcd = None

    def _wait_for_change(self, start_revision):
        """Blocks until the key is modified at or after ``start_revision`` or the wait time elapses."""
        event = self.etcd.watch_once(self.key, timeout=self.wait_time, start_revision=start_revision)
        if isinstance(event, Exception):
            # watch errors such as compaction are handed to the callback instead of raised
            raise event

    def get_change_notification_stream(self, stop_event: threading.Event, out: queue.Queue) -> None:
        last_index = 0
        # lowest revision the store still keeps history for, raised on compaction
        watch_floor = 0

        while not stop_event.is_set():
            if not self.etcd:
                self._connect()
                if not self.etcd:
                    stop_event.wait(self.retry_after)
                    continue

            try:
                if last_index:
                    self._wait_for_change(max(last_index + 1, watch_floor))
                value, metadata = self.etcd.get(self.key, serializable=False)
            except etcd3.exceptions.WatchTimedOut:
                continue
            except etcd3.exceptions.RevisionCompactedError as e:
                compacted_revision = getattr(e, 'compacted_revision', None) or 0
                if compacted_revision > watch_floor:
                    logger.warning(f"History of key {self.key} compacted up to revision {compacted_revision}. Watching from there.")
                    watch_floor = compacted_revision
                else:
                    logger.error(f"Watch on key {self.key} reported compaction without a newer revision ({e}). Retrying in {self.retry_after} seconds.")
                    stop_event.wait(self.retry_after)
                try:
                    value, metadata = self.etcd.get(self.key, serializable=False)
                except Exception as get_error:
                    logger.error(f"etcd error: {get_error}")
                    stop_event.wait(self.retry_after)
                    continue
            except etcd3.exceptions.ConnectionFailedError as e:
                if stop_event.is_set():
                    break
                logger.error(f"etcd connection failed: {e}. Reconnecting in {self.retry_after} seconds.")
                self.etcd = None
                stop_event.wait(self.retry_after)
                continue
            except Exception as e:
                if stop_event.is_set():
                    break
                logger.error(f"etcd error: {e}")
                stop_event.wait(self.retry_after)
                continue

            if value is None:
                logger.warning(f"Cannot get variable for key {self.key}. Will try again in {self.retry_after} seconds.")
                stop_event.wait(self.retry_after)
                continue

            if metadata.mod_revision <= last_index:
                continue
            last_index = metadata.mod_revision

            leader = value.decode('utf-8')
            state = leader == self.nodename
            logger.info(f"Leader key {self.key} is '{leader}' (revision {last_index}), this node is leader: {state}")
            if not self._publish(stop_event, out, state):
                break

        logger.info(f"Stopped watching etcd key {self.key}.")
