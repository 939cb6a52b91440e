import base64
import logging
import queue
import threading
from typing import Optional, Tuple

import requests

from .leader_checker import LeaderChecker, parse_endpoint

logger = logging.getLogger(__name__)

CONSUL_DEFAULT_PORT = 8500
HTTP_TIMEOUT_MARGIN = 5  # seconds added to the blocking wait for the HTTP timeout


class ConsulStoreError(Exception):
    pass


class ConsulLeaderChecker(LeaderChecker):
    """Follows the leader key through Consul blocking queries.

    Attributes:
        base_url (str): Consul HTTP API address (e.g. 'http://127.0.0.1:8500').
        session (requests.Session): Session used for all KV reads.
    """

    def __init__(self, consul_endpoints, key, nodename, token: Optional[str] = None, session: Optional[requests.Session] = None, **kwargs):
        super().__init__(key, nodename, **kwargs)
        endpoint = consul_endpoints[0] if consul_endpoints else f"http://127.0.0.1:{CONSUL_DEFAULT_PORT}"
        scheme, host, port = parse_endpoint(endpoint, CONSUL_DEFAULT_PORT)
        self.base_url = f"{scheme}://{host}:{port}"

        self.session = session or requests.Session()
        if token:
            self.session.headers['X-Consul-Token'] = token
        logger.debug(f"Initialized ConsulLeaderChecker for {self.base_url}, key {self.key}")

    def get_key(self, last_index: int) -> Optional[Tuple[str, int]]:
        """Reads the leader key, blocking server-side while its index equals ``last_index``.

        Returns:
            Optional[Tuple[str, int]]: (value, modify index), or None if the key does not exist.

        Raises:
            ConsulStoreError: The store could not be reached or answered with an error.
        """
        params = {'consistent': '', 'index': last_index, 'wait': f"{int(self.wait_time)}s"}
        url = f"{self.base_url}/v1/kv/{self.key.lstrip('/')}"
        try:
            response = self.session.get(url, params=params, timeout=self.wait_time + HTTP_TIMEOUT_MARGIN)
        except requests.RequestException as e:
            raise ConsulStoreError(f"request to {url} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ConsulStoreError(f"unexpected status {response.status_code} from {url}: {response.text.strip()}")

        try:
            entry = response.json()[0]
            raw_value = entry.get('Value')
            value = base64.b64decode(raw_value).decode('utf-8') if raw_value else ''
            return value, int(entry['ModifyIndex'])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ConsulStoreError(f"malformed KV response from {url}: {e}") from e

    def get_change_notification_stream(self, stop_event: threading.Event, out: queue.Queue) -> None:
        last_index = 0

        while not stop_event.is_set():
            try:
                result = self.get_key(last_index)
            except ConsulStoreError as e:
                if stop_event.is_set():
                    break
                logger.error(f"consul error: {e}")
                stop_event.wait(self.retry_after)
                continue

            if result is None:
                logger.warning(f"Cannot get variable for key {self.key}. Will try again in {self.retry_after} seconds.")
                stop_event.wait(self.retry_after)
                continue

            leader, modify_index = result
            if modify_index < last_index:
                logger.info(f"Consul index for key {self.key} went backwards ({last_index} -> {modify_index}). Resetting.")
                last_index = 0
            if modify_index <= last_index:
                continue
            last_index = modify_index

            state = leader == self.nodename
            logger.info(f"Leader key {self.key} is '{leader}' (index {last_index}), this node is leader: {state}")
            if not self._publish(stop_event, out, state):
                break

        logger.info(f"Stopped watching consul key {self.key}.")
