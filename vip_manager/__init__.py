"""vip-manager: keeps a floating virtual IP on the current leader node.

A leader checker follows the leader key in etcd or Consul and the IP manager
adds or removes the virtual IP on the local interface to match.
"""

__version__ = "0.1.0"
