import queue
import threading
import time
from types import SimpleNamespace

import etcd3

from vip_manager.internal.discovery import etcd_client
from vip_manager.internal.discovery.etcd_client import EtcdLeaderChecker


def kv(value, revision):
    return value.encode('utf-8'), SimpleNamespace(mod_revision=revision)


class ScriptedEtcd:
    """Answers get/watch_once from scripts and stops the checker once they run out."""

    def __init__(self, stop_event, get_results, watch_results=()):
        self.stop_event = stop_event
        self.get_results = list(get_results)
        self.watch_results = list(watch_results)
        self.get_calls = 0
        self.watch_calls = []

    def status(self):
        return SimpleNamespace(version='3.5.0')

    def get(self, key, serializable=False):
        assert serializable is False
        self.get_calls += 1
        if not self.get_results:
            self.stop_event.set()
            return None, None
        result = self.get_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def watch_once(self, key, timeout=None, start_revision=None):
        self.watch_calls.append(start_revision)
        if not self.get_results:
            self.stop_event.set()
            raise etcd3.exceptions.WatchTimedOut()
        if self.watch_results:
            result = self.watch_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return SimpleNamespace(key=key)


def run_checker(get_results, watch_results=(), nodename='node1'):
    stop_event = threading.Event()
    client = ScriptedEtcd(stop_event, get_results, watch_results)
    checker = EtcdLeaderChecker(['http://127.0.0.1:2379'], key='/service/pg/leader', nodename=nodename,
                                client=client, retry_after=0.01, wait_time=0.05)
    out = queue.Queue()
    checker.get_change_notification_stream(stop_event, out)
    return list(out.queue), client


def test_leader_sequence_yields_each_transition_once():
    states, client = run_checker([kv('node2', 5), kv('node1', 6), kv('node2', 7)])

    assert states == [False, True, False]
    assert client.watch_calls == [6, 7, 8]


def test_watch_timeout_reissues_wait_without_emitting():
    timed_out = etcd3.exceptions.WatchTimedOut()
    states, client = run_checker([kv('node1', 3), kv('node2', 4)], watch_results=[timed_out, timed_out])

    assert states == [True, False]
    assert client.watch_calls == [4, 4, 4, 5]
    assert client.get_calls == 2


def test_same_revision_is_not_emitted_again():
    states, _ = run_checker([kv('node1', 3), kv('node1', 3), kv('node2', 5)])
    assert states == [True, False]


def test_missing_key_and_store_errors_are_retried():
    states, client = run_checker([(None, None), Exception('etcdserver: request timed out'), kv('node1', 2)])

    assert states == [True]
    # no blocking wait is issued before a revision has been seen
    assert client.watch_calls == [3]


def test_connection_failure_reconnects(monkeypatch):
    stop_event = threading.Event()
    client = ScriptedEtcd(stop_event, [etcd3.exceptions.ConnectionFailedError(), kv('node1', 9)])
    connects = []

    def fake_client(**kwargs):
        connects.append(kwargs)
        return client

    monkeypatch.setattr(etcd_client.etcd3, 'client', fake_client)
    checker = EtcdLeaderChecker(['http://etcd1:2379', 'etcd2:2380'], key='leader', nodename='node1',
                                user='vip', password='secret', retry_after=0.01, wait_time=0.05)
    out = queue.Queue()
    checker.get_change_notification_stream(stop_event, out)

    assert list(out.queue) == [True]
    assert len(connects) == 2
    assert connects[0] == {'host': 'etcd1', 'port': 2379, 'user': 'vip', 'password': 'secret'}


def test_unreachable_endpoints_leave_client_unset(monkeypatch):
    def failing_client(**kwargs):
        raise etcd3.exceptions.ConnectionFailedError()

    monkeypatch.setattr(etcd_client.etcd3, 'client', failing_client)
    checker = EtcdLeaderChecker(['http://etcd1:2379', 'http://etcd2:2379'], key='leader', nodename='node1')

    assert checker.etcd is None
    assert checker.etcd_endpoints == [('etcd1', 2379), ('etcd2', 2379)]


def test_blocked_delivery_is_abandoned_on_stop():
    stop_event = threading.Event()
    client = ScriptedEtcd(stop_event, [kv('node1', 1)])
    checker = EtcdLeaderChecker(['http://127.0.0.1:2379'], key='leader', nodename='node1',
                                client=client, retry_after=0.01, wait_time=0.05)
    out = queue.Queue(maxsize=1)
    out.put(False)

    thread = threading.Thread(target=checker.get_change_notification_stream, args=(stop_event, out), daemon=True)
    thread.start()
    time.sleep(0.3)
    assert thread.is_alive()

    stop_event.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert out.get_nowait() is False


class CompactedEtcd:
    """Key stable at revision 5 while the store has compacted its history up to 1000."""

    COMPACTED_REVISION = 1000

    def __init__(self, stop_event):
        self.stop_event = stop_event
        self.value, self.mod_revision = 'node1', 5
        self.get_calls = 0
        self.watch_calls = []

    def get(self, key, serializable=False):
        self.get_calls += 1
        return kv(self.value, self.mod_revision)

    def watch_once(self, key, timeout=None, start_revision=None):
        self.watch_calls.append(start_revision)
        if len(self.watch_calls) > 10:
            self.stop_event.set()
            raise etcd3.exceptions.WatchTimedOut()
        if start_revision < self.COMPACTED_REVISION:
            # etcd3 hands watch errors to the callback, so watch_once returns them
            return etcd3.exceptions.RevisionCompactedError(self.COMPACTED_REVISION)
        if self.mod_revision < self.COMPACTED_REVISION + 1:
            self.value, self.mod_revision = 'node2', self.COMPACTED_REVISION + 1
            return SimpleNamespace(key=key)
        self.stop_event.set()
        raise etcd3.exceptions.WatchTimedOut()


def test_compacted_history_moves_watch_start_forward():
    stop_event = threading.Event()
    client = CompactedEtcd(stop_event)
    checker = EtcdLeaderChecker(['http://127.0.0.1:2379'], key='leader', nodename='node1',
                                client=client, retry_after=0.01, wait_time=0.05)
    out = queue.Queue()

    thread = threading.Thread(target=checker.get_change_notification_stream, args=(stop_event, out), daemon=True)
    thread.start()
    thread.join(timeout=2)
    stop_event.set()
    thread.join(timeout=2)

    assert list(out.queue) == [True, False]
    assert client.watch_calls == [6, 1000, 1002]
    assert client.get_calls == 3
