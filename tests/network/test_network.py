#!/usr/bin/python3

import sys
import os
import json

try:
    import pytest
except ImportError:
    print('Unable to import pytest.  Is pytest installed?')
    sys.exit(1)

# Find proxstrap
prefix = '.'
for i in range(0,3):
    if os.path.isdir(os.path.join(prefix, 'proxstrap')):
        sys.path.insert(0, prefix)
        break
    else:
        prefix = '../' + prefix

try:
    import proxstrap.Network
    import proxstrap.ProxException
    import proxstrap.proxutil
except ImportError as e:
    print(e)
    print('Unable to import proxstrap.  Is proxstrap installed?')
    sys.exit(1)

routes = [{"dst": "default", "gateway": "203.0.113.1", "dev": "eno1",
           "flags": ["onlink"]}]

addresses = [{"ifindex": 2, "ifname": "eno1", "addr_info": [
    {"family": "inet", "local": "203.0.113.10", "prefixlen": 26, "scope": "global"},
    {"family": "inet6", "local": "2001:db8:1:2::2", "prefixlen": 64, "scope": "global"},
    {"family": "inet6", "local": "fe80::aabb:ccff:fe00:1122", "prefixlen": 64, "scope": "link"},
]}]

links = [{"ifindex": 2, "ifname": "eno1", "address": "aa:bb:cc:00:11:22",
          "broadcast": "ff:ff:ff:ff:ff:ff"}]

# test the derived addresses
def test_main_addresses():
    net = proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26', '203.0.113.1',
                                          'aa:bb:cc:00:11:22', '2001:db8:1:2::2/64')
    assert(net.main_ipv4 == '203.0.113.10')
    assert(net.main_ipv6 == '2001:db8:1:2::2')

def test_private_ip_cidr():
    net = proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26', '203.0.113.1',
                                          'aa:bb:cc:00:11:22', None, '10.10.0.20/16')
    assert(net.private_ip_cidr == '10.10.0.1/16')

def test_private_ip_cidr_invalid():
    net = proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26', '203.0.113.1',
                                          'aa:bb:cc:00:11:22', None, 'not-a-subnet')
    with pytest.raises(proxstrap.ProxException.ProxException):
        net.private_ip_cidr

def test_first_ipv6_cidr():
    net = proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26', '203.0.113.1',
                                          'aa:bb:cc:00:11:22', '2a01:4f8:10a:1f2::2/64')
    assert(net.first_ipv6_cidr == '2a01:4f8:10a:1f2:1::1/80')

def test_no_ipv6():
    net = proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26', '203.0.113.1',
                                          'aa:bb:cc:00:11:22')
    assert(net.main_ipv6 == '')
    assert(net.first_ipv6_cidr == '')

# test the iproute2 parsers
def test_default_interface():
    assert(proxstrap.Network.default_interface(routes) == 'eno1')
    assert(proxstrap.Network.default_interface([]) is None)

def test_default_gateway():
    assert(proxstrap.Network.default_gateway(routes) == '203.0.113.1')

def test_global_address():
    assert(proxstrap.Network.global_address(addresses, 'inet') == '203.0.113.10/26')
    assert(proxstrap.Network.global_address(addresses, 'inet6') == '2001:db8:1:2::2/64')

def test_global_address_missing():
    assert(proxstrap.Network.global_address([{"addr_info": []}], 'inet6') is None)

def test_link_address():
    assert(proxstrap.Network.link_address(links) == 'aa:bb:cc:00:11:22')

# test proxstrap.Network.detect
def fake_ip(args, printfn=None, **kwargs):
    if args[2] == 'route':
        return (json.dumps(routes), '', 0)
    if args[2] == 'address':
        return (json.dumps(addresses), '', 0)
    return (json.dumps(links), '', 0)

def test_detect(monkeypatch):
    monkeypatch.setattr(proxstrap.proxutil, 'subprocess_check_output', fake_ip)
    net = proxstrap.Network.detect()
    assert(net.interface == 'eno1')
    assert(net.ipv4_cidr == '203.0.113.10/26')
    assert(net.ipv4_gateway == '203.0.113.1')
    assert(net.mac_address == 'aa:bb:cc:00:11:22')
    assert(net.ipv6_cidr == '2001:db8:1:2::2/64')

def test_detect_no_ipv4(monkeypatch):
    def fake(args, printfn=None, **kwargs):
        if args[2] == 'address':
            return (json.dumps([{"addr_info": []}]), '', 0)
        return fake_ip(args)

    monkeypatch.setattr(proxstrap.proxutil, 'subprocess_check_output', fake)
    with pytest.raises(proxstrap.ProxException.ProxException):
        proxstrap.Network.detect('eno1')
