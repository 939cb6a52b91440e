import ipaddress

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class VIPConfig(BaseModel):
    """Immutable description of the floating address this node may hold.

    Attributes:
        ip (str): The virtual IP address (IPv4 or IPv6).
        netmask (int): Prefix length of the virtual IP.
        interface (str): Network interface the address is configured on.
        nodename (str): Identifier of this node, compared against the leader marker.
        trigger_key (str): Coordination-store key holding the leader marker.
    """

    model_config = ConfigDict(frozen=True)

    ip: str
    netmask: int
    interface: str
    nodename: str
    trigger_key: str

    @field_validator('ip')
    @classmethod
    def _check_ip(cls, value: str) -> str:
        try:
            return str(ipaddress.ip_address(value.strip()))
        except ValueError as e:
            raise ValueError(f"invalid virtual IP address '{value}': {e}")

    @field_validator('interface', 'nodename', 'trigger_key')
    @classmethod
    def _check_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @model_validator(mode='after')
    def _check_netmask(self) -> 'VIPConfig':
        max_prefix = ipaddress.ip_address(self.ip).max_prefixlen
        if not 0 <= self.netmask <= max_prefix:
            raise ValueError(f"netmask {self.netmask} out of range 0..{max_prefix} for {self.ip}")
        return self

    @property
    def cidr(self) -> str:
        return str(ipaddress.ip_interface(f"{self.ip}/{self.netmask}"))

    @property
    def address_family(self) -> str:
        return 'inet6' if ipaddress.ip_address(self.ip).version == 6 else 'inet'
