import argparse
import logging
import queue
import signal
import sys
import threading

from dotenv import load_dotenv

from vip_manager.config import AppConfig, ConfigError
from vip_manager.internal.discovery.leader_checker import UnknownDCSTypeError, new_leader_checker
from vip_manager.internal.manager.ip_manager import IPManager
from vip_manager.internal.network.ip_commands import IPCommands
from vip_manager.internal.status.status_api import StatusServer, create_status_app

logger = logging.getLogger(__name__)


def build_arg_parser():
    parser = argparse.ArgumentParser(description='Keep a virtual IP on the node named by the leader key.')
    parser.add_argument('--config', help='Path to the YAML configuration file.')
    parser.add_argument('--ip', help='Virtual IP address to manage.')
    parser.add_argument('--netmask', type=int, help='Prefix length of the virtual IP.')
    parser.add_argument('--interface', help='Network interface to configure the virtual IP on.')
    parser.add_argument('--trigger-key', dest='trigger_key', help='Key naming the current leader.')
    parser.add_argument('--trigger-value', dest='trigger_value', help='Leader key value that means this node (default: hostname).')
    parser.add_argument('--dcs-type', dest='dcs_type', choices=['etcd', 'consul'], help='Coordination store type.')
    parser.add_argument('--dcs-endpoints', dest='dcs_endpoints', help='Comma separated coordination store endpoints.')
    parser.add_argument('--etcd-user', dest='etcd_user')
    parser.add_argument('--etcd-password', dest='etcd_password')
    parser.add_argument('--consul-token', dest='consul_token')
    parser.add_argument('--recheck-interval', dest='recheck_interval', type=float, help='Seconds between forced address rechecks.')
    parser.add_argument('--retry-after', dest='retry_after', type=float, help='Seconds to wait after a coordination store error.')
    parser.add_argument('--wait-time', dest='wait_time', type=float, help='Server-side wait of a blocking leader key read.')
    parser.add_argument('--arp-probe', dest='arp_probe', action=argparse.BooleanOptionalAction, default=None,
                        help='Probe for a duplicate address before claiming the virtual IP.')
    parser.add_argument('--status-host', dest='status_host')
    parser.add_argument('--status-port', dest='status_port', type=int, help='Serve the status API on this port.')
    parser.add_argument('--log-level', dest='log_level')
    return parser


class VipManagerService:
    def __init__(self, app_config: AppConfig):
        self.app_config = app_config
        self.vip_config = app_config.get_vip_config()
        self.stop_event = threading.Event()
        self.states = queue.Queue(maxsize=1)

        self.leader_checker = new_leader_checker(app_config, self.vip_config)
        self.ip_commands = IPCommands(self.vip_config, arp_probe=app_config.is_arp_probe_enabled())
        self.ip_manager = IPManager(self.ip_commands, recheck_interval=app_config.get_recheck_interval())

        self.status_server = None
        status_port = app_config.get_status_port()
        if status_port:
            app = create_status_app(self.ip_manager, self.vip_config)
            self.status_server = StatusServer(app, app_config.get_status_host(), status_port)

    def start(self):
        logger.info(f"Starting vip-manager for {self.vip_config.cidr} on {self.vip_config.interface} as '{self.vip_config.nodename}'")
        signal.signal(signal.SIGINT, self.shutdown)
        signal.signal(signal.SIGTERM, self.shutdown)

        checker_thread = threading.Thread(target=self.leader_checker.get_change_notification_stream,
                                          args=(self.stop_event, self.states), name='leader-checker', daemon=True)
        checker_thread.start()
        if self.status_server:
            self.status_server.start()

        # Returns only after the apply loop has released the address
        self.ip_manager.sync_states(self.stop_event, self.states)

        if self.status_server:
            self.status_server.stop()
        checker_thread.join(timeout=self.app_config.get_wait_time() + 5)
        if checker_thread.is_alive():
            logger.warning("Leader checker is still blocked in a store read. Exiting without it.")
        logger.info("vip-manager stopped.")

    def shutdown(self, signum=None, frame=None):
        logger.info(f"Shutdown signal received ({signum if signum else 'programmatically'}). Stopping vip-manager...")
        self.stop_event.set()


def main(argv=None):
    load_dotenv()
    args = build_arg_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k != 'config'}

    try:
        app_config = AppConfig(config_path=args.config, overrides=overrides)
        service = VipManagerService(app_config)
    except (ConfigError, UnknownDCSTypeError) as e:
        logger.error(f"Cannot start vip-manager: {e}")
        return 1

    service.start()
    return 0


if __name__ == '__main__':
    sys.exit(main())
