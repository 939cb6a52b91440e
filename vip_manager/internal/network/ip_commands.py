import logging
import subprocess

from vip_manager.internal.domain.models import VIPConfig

logger = logging.getLogger(__name__)

# `ip addr add` of a present address and `ip addr del` of an absent one both exit 2
IP_ALREADY_IN_STATE_EXIT = 2

ARPING_DUPLICATE_EXIT = 1
ARPING_COUNT = 2
ARPING_DEADLINE = 3  # seconds


class IPCommands:
    """Queries and mutates the address list of one interface with iproute2.

    Every method reports its outcome as a boolean and never raises; failures
    are logged and left to the caller's next reconciliation pass.
    """

    def __init__(self, vip_config: VIPConfig, arp_probe: bool = True, ip_binary: str = 'ip', arping_binary: str = 'arping'):
        self.vip_config = vip_config
        self.arp_probe = arp_probe
        self.ip_binary = ip_binary
        self.arping_binary = arping_binary

    def _run(self, args, timeout=None):
        logger.debug(f"Running command: {' '.join(args)}")
        return subprocess.run(args, shell=False, check=False, capture_output=True, text=True, timeout=timeout)

    def query_address(self) -> bool:
        """Returns True if the interface currently carries the virtual IP."""
        cidr = self.vip_config.cidr
        family = self.vip_config.address_family
        try:
            result = self._run([self.ip_binary, '-o', 'addr', 'show', 'dev', self.vip_config.interface])
        except OSError as e:
            logger.error(f"Failed to query addresses on {self.vip_config.interface}: {e}")
            return False

        if result.returncode != 0:
            logger.error(f"Querying addresses on {self.vip_config.interface} failed. Return code: {result.returncode}, STDERR: {result.stderr.strip()}")
            return False

        for line in result.stdout.splitlines():
            parts = line.split()
            for i, token in enumerate(parts[:-1]):
                if token == family and parts[i + 1] == cidr:
                    return True
        return False

    def configure_address(self) -> bool:
        if self.arp_probe and self.arp_query_duplicates():
            logger.warning(f"Another host already answers for {self.vip_config.ip} on {self.vip_config.interface}. Not claiming the address.")
            return False
        logger.info(f"Configuring address {self.vip_config.cidr} on {self.vip_config.interface}")
        return self._run_address_configuration('add')

    def deconfigure_address(self) -> bool:
        logger.info(f"Removing address {self.vip_config.cidr} on {self.vip_config.interface}")
        return self._run_address_configuration('del')

    def _run_address_configuration(self, action: str) -> bool:
        args = [self.ip_binary, 'addr', action, self.vip_config.cidr, 'dev', self.vip_config.interface]
        try:
            result = self._run(args)
        except OSError as e:
            logger.error(f"Error running ip address {action} {self.vip_config.cidr} on {self.vip_config.interface}: {e}")
            return False

        if result.returncode == 0:
            return True
        if result.returncode == IP_ALREADY_IN_STATE_EXIT:
            logger.info(f"Address {self.vip_config.cidr} already in requested state on {self.vip_config.interface} ({result.stderr.strip()})")
            return True

        logger.error(f"ip address {action} {self.vip_config.cidr} on {self.vip_config.interface} failed. Return code: {result.returncode}, STDERR: {result.stderr.strip()}")
        return False

    def arp_query_duplicates(self) -> bool:
        """Probes the link for another host answering ARP for the virtual IP.

        Only a definite reply counts as a duplicate. Timeouts, a missing
        arping binary and IPv6 addresses all report no duplicate.
        """
        if self.vip_config.address_family != 'inet':
            return False

        args = [self.arping_binary, '-D', '-q',
                '-c', str(ARPING_COUNT), '-w', str(ARPING_DEADLINE),
                '-I', self.vip_config.interface, self.vip_config.ip]
        try:
            result = self._run(args, timeout=ARPING_DEADLINE + 2)
        except subprocess.TimeoutExpired:
            logger.warning(f"Duplicate address probe for {self.vip_config.ip} timed out. Assuming no duplicate.")
            return False
        except OSError as e:
            logger.warning(f"Duplicate address probe for {self.vip_config.ip} could not run: {e}. Assuming no duplicate.")
            return False

        if result.returncode == ARPING_DUPLICATE_EXIT:
            return True
        if result.returncode != 0:
            logger.debug(f"arping exited with {result.returncode} ({result.stderr.strip()}). Assuming no duplicate.")
        return False
