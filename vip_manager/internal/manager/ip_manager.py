import logging
import queue
import threading
import time

logger = logging.getLogger(__name__)

DEFAULT_RECHECK_INTERVAL = 10  # seconds
STATE_POLL_INTERVAL = 0.2  # seconds between stop checks while waiting for leader events


class IPManager:
    """Keeps the virtual IP configured on this node exactly while it is leader.

    Two activities share one desired-state flag guarded by ``state_lock``:

    * ``sync_states`` receives leadership booleans and periodic ticks and wakes
      the apply loop through the ``recheck`` condition.
    * ``apply_loop`` compares the live interface state with the desired state
      and adds or removes the address until they match.

    Only one apply loop may run per interface/address pair; ``sync_states``
    starts exactly one.
    """

    def __init__(self, ip_commands, recheck_interval: float = DEFAULT_RECHECK_INTERVAL):
        self.ip_commands = ip_commands
        self.recheck_interval = recheck_interval

        self.current_state = False
        # bumped on every change of current_state
        self.state_version = 0
        self.state_lock = threading.Lock()
        self.recheck = threading.Condition(self.state_lock)

    def get_state(self) -> bool:
        with self.state_lock:
            return self.current_state

    def _update_state(self, new_state: bool) -> None:
        with self.state_lock:
            if self.current_state != new_state:
                logger.info(f"Desired state changed from {self.current_state} to {new_state}")
                self.current_state = new_state
                self.state_version += 1
                self.recheck.notify_all()

    def _wake(self) -> None:
        with self.state_lock:
            self.recheck.notify_all()

    def apply_loop(self, stop_event: threading.Event) -> None:
        cidr = self.ip_commands.vip_config.cidr
        while True:
            with self.state_lock:
                seen_version = self.state_version
            try:
                actual_state = self.ip_commands.query_address()
                with self.state_lock:
                    desired_state = self.current_state
                logger.info(f"IP address {cidr} state is {actual_state}, desired {desired_state}")

                if actual_state != desired_state:
                    if desired_state:
                        applied = self.ip_commands.configure_address()
                    else:
                        applied = self.ip_commands.deconfigure_address()
                    if applied:
                        continue
                    logger.warning(f"Could not bring {cidr} to desired state {desired_state}. Retrying on next wake.")
            except Exception as e:
                logger.error(f"Error reconciling address {cidr}: {e}. Retrying on next wake.", exc_info=True)

            with self.state_lock:
                # A change published during this pass already notified; don't wait for it again
                if self.state_version == seen_version and not stop_event.is_set():
                    self.recheck.wait()

            if stop_event.is_set():
                try:
                    self.ip_commands.deconfigure_address()
                except Exception as e:
                    logger.error(f"Error releasing address {cidr} on stop: {e}", exc_info=True)
                logger.info(f"Apply loop for {cidr} stopped.")
                return

    def sync_states(self, stop_event: threading.Event, states: queue.Queue) -> None:
        apply_thread = threading.Thread(target=self.apply_loop, args=(stop_event,), name='ip-apply-loop', daemon=True)
        apply_thread.start()

        next_tick = time.monotonic() + self.recheck_interval
        while not stop_event.is_set():
            timeout = min(max(next_tick - time.monotonic(), 0), STATE_POLL_INTERVAL)
            try:
                new_state = states.get(timeout=timeout)
            except queue.Empty:
                now = time.monotonic()
                if now >= next_tick:
                    logger.debug("Periodic recheck of address state.")
                    self._wake()
                    next_tick = now + self.recheck_interval
                continue
            self._update_state(new_state)

        logger.info("Stop requested. Releasing virtual IP...")
        with self.state_lock:
            self.current_state = False
            self.state_version += 1
            self.recheck.notify_all()
        apply_thread.join()
        logger.info("IP manager stopped.")
