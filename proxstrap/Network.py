# Copyright (C) 2025-2026  The proxstrap authors

# This library is free software; you can redistribute it and/or
# modify it under the terms of the GNU Lesser General Public
# License as published by the Free Software Foundation;
# version 2.1 of the License.

# This library is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.

# You should have received a copy of the GNU Lesser General Public
# License along with this library; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301  USA

"""
Network parameters of the host being provisioned
"""

import ipaddress
import json
import logging

import proxstrap.ProxException
import proxstrap.proxutil


class NetworkConfig(object):
    """
    Class that represents the network setup that is carried over from the
    rescue system to the installed system.  Objects of this type contain
    6 pieces of information:

    interface      - The name of the uplink interface.
    ipv4_cidr      - The main IPv4 address with prefix, e.g. 1.2.3.4/26.
    ipv4_gateway   - The IPv4 default gateway.
    mac_address    - The MAC address of the uplink interface.
    ipv6_cidr      - The main IPv6 address with prefix (optional).
    private_subnet - The private subnet for guests, e.g. 192.168.1.10/24.
    """
    def __init__(self, interface, ipv4_cidr, ipv4_gateway, mac_address,
                 ipv6_cidr=None, private_subnet="192.168.1.10/24"):
        self.interface = interface
        self.ipv4_cidr = ipv4_cidr
        self.ipv4_gateway = ipv4_gateway
        self.mac_address = mac_address
        self.ipv6_cidr = ipv6_cidr or ""
        self.private_subnet = private_subnet

    @property
    def main_ipv4(self):
        if not self.ipv4_cidr:
            return ""
        return self.ipv4_cidr.split('/')[0]

    @property
    def main_ipv6(self):
        if not self.ipv6_cidr:
            return ""
        return self.ipv6_cidr.split('/')[0]

    @property
    def private_ip_cidr(self):
        """
        The first address of the private subnet, found by replacing the last
        octet of the given address with 1 and keeping the prefix length.
        """
        try:
            iface = ipaddress.IPv4Interface(self.private_subnet)
        except ValueError:
            raise proxstrap.ProxException.ProxException("Invalid private subnet %s" % (self.private_subnet))

        octets = str(iface.ip).split('.')
        return "%s.1/%d" % ('.'.join(octets[:3]), iface.network.prefixlen)

    @property
    def first_ipv6_cidr(self):
        """
        The first address of the /80 carved out of the main IPv6 /64, or an
        empty string if there is no IPv6 configuration.
        """
        if not self.ipv6_cidr:
            return ""
        try:
            iface = ipaddress.IPv6Interface(self.ipv6_cidr)
        except ValueError:
            raise proxstrap.ProxException.ProxException("Invalid IPv6 address %s" % (self.ipv6_cidr))

        hextets = iface.ip.exploded.split(':')[:4]
        first = ipaddress.IPv6Address(':'.join(hextets + ['1', '0', '0', '1']))
        return "%s/80" % (first.compressed)

    def __repr__(self):
        return "NetworkConfig(%s, %s via %s)" % (self.interface, self.ipv4_cidr,
                                                 self.ipv4_gateway)


def _ip_json(args):
    """
    Internal function to run an iproute2 command in JSON mode.
    """
    stdout, stderr_unused, retcode_unused = proxstrap.proxutil.subprocess_check_output(["ip", "-j"] + args)
    try:
        return json.loads(stdout or "[]")
    except ValueError as err:
        raise proxstrap.ProxException.ProxException("Could not parse output of ip %s: %s" % (' '.join(args), err))


def default_interface(routes):
    """
    Function to get the interface of the first default route out of the
    output of 'ip -j route show default'.
    """
    for route in routes:
        if route.get('dst') == 'default' and route.get('dev'):
            return route['dev']
    return None


def default_gateway(routes):
    """
    Function to get the gateway of the first default route out of the
    output of 'ip -j route show default'.
    """
    for route in routes:
        if route.get('dst') == 'default' and route.get('gateway'):
            return route['gateway']
    return None


def global_address(addresses, family):
    """
    Function to get the first global address of the given family ('inet'
    or 'inet6') in CIDR notation out of the output of 'ip -j address show'.
    Returns None if there is no such address.
    """
    for link in addresses:
        for addr in link.get('addr_info', []):
            if addr.get('family') == family and addr.get('scope') == 'global':
                return "%s/%s" % (addr['local'], addr['prefixlen'])
    return None


def link_address(links):
    """
    Function to get the MAC address out of the output of 'ip -j link show'.
    """
    for link in links:
        if link.get('address'):
            return link['address']
    return None


def detect(interface=None, private_subnet="192.168.1.10/24"):
    """
    Function to read the current network configuration of the host.  If no
    interface is given, the interface of the default route is used.
    """
    log = logging.getLogger('%s' % (__name__))

    routes = _ip_json(["route", "show", "default"])
    if interface is None:
        interface = default_interface(routes)
        if interface is None:
            raise proxstrap.ProxException.ProxException("Could not find the default network interface")

    addresses = _ip_json(["address", "show", "dev", interface])
    links = _ip_json(["link", "show", "dev", interface])

    network = NetworkConfig(interface,
                            global_address(addresses, 'inet'),
                            default_gateway(routes),
                            link_address(links),
                            global_address(addresses, 'inet6'),
                            private_subnet)
    if not network.ipv4_cidr:
        raise proxstrap.ProxException.ProxException("Interface %s has no global IPv4 address" % (interface))

    log.info("Interface: %s", network.interface)
    log.info("Main IPv4: %s, gateway %s", network.ipv4_cidr, network.ipv4_gateway)
    log.info("MAC address: %s", network.mac_address)
    log.info("IPv6: %s", network.ipv6_cidr or "none")

    return network
