import queue
import threading
import time

import pytest

from vip_manager.config import ENV_VARS
from vip_manager.internal.domain.models import VIPConfig
from vip_manager.internal.manager.ip_manager import IPManager


class FakeIPCommands:
    """In-memory stand-in for the interface address list."""

    def __init__(self, vip_config, present=False):
        self.vip_config = vip_config
        self.present = present
        self.fail_configure = 0
        self.fail_deconfigure = 0
        self.query_errors = 0
        self.deconfigure_errors = 0
        self.query_calls = 0
        self.configure_calls = 0
        self.deconfigure_calls = 0
        self.lock = threading.Lock()

    def query_address(self):
        with self.lock:
            self.query_calls += 1
            if self.query_errors:
                self.query_errors -= 1
                raise UnicodeDecodeError('utf-8', b'\xff', 0, 1, 'invalid start byte')
            return self.present

    def configure_address(self):
        with self.lock:
            self.configure_calls += 1
            if self.fail_configure:
                self.fail_configure -= 1
                return False
            self.present = True
            return True

    def deconfigure_address(self):
        with self.lock:
            self.deconfigure_calls += 1
            if self.deconfigure_errors:
                self.deconfigure_errors -= 1
                raise RuntimeError('netlink socket closed')
            if self.fail_deconfigure:
                self.fail_deconfigure -= 1
                return False
            self.present = False
            return True


def wait_until(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RunningManager:
    def __init__(self, manager, ip_commands):
        self.manager = manager
        self.ip_commands = ip_commands
        self.stop_event = threading.Event()
        self.states = queue.Queue(maxsize=1)
        self.thread = threading.Thread(target=manager.sync_states, args=(self.stop_event, self.states), daemon=True)

    def start(self):
        self.thread.start()
        return self

    def stop(self, timeout=5.0):
        self.stop_event.set()
        self.thread.join(timeout=timeout)
        assert not self.thread.is_alive(), "sync_states did not return after stop"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for env_var in list(ENV_VARS.values()) + ['VIP_CONFIG']:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def vip_config():
    return VIPConfig(ip='10.0.0.5', netmask=24, interface='eth0', nodename='node1', trigger_key='/service/pg/leader')


@pytest.fixture
def fake_ip(vip_config):
    return FakeIPCommands(vip_config)


@pytest.fixture
def run_manager(fake_ip):
    started = []

    def _run(recheck_interval=10, ip_commands=None):
        commands = ip_commands or fake_ip
        running = RunningManager(IPManager(commands, recheck_interval=recheck_interval), commands)
        started.append(running)
        return running

    yield _run

    for running in started:
        if running.thread.is_alive():
            running.stop()
