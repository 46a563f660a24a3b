#!/usr/bin/python3

import sys
import os
import stat

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
    import proxstrap.Answer
    import proxstrap.Disk
    import proxstrap.Network
    import proxstrap.ProxException
    import proxstrap.Topology
except ImportError as e:
    print(e)
    print('Unable to import proxstrap.  Is proxstrap installed?')
    sys.exit(1)

GB = 1000 * 1000 * 1000

def make_disks(*sizes):
    names = 'abcdefghijklmnopqrstuvwxyz'
    return [proxstrap.Disk.DiskDescriptor('/dev/sd' + names[i], size, None)
            for i, size in enumerate(sizes)]

def make_identity(password='s3cret'):
    return proxstrap.Answer.Identity('pve1', 'pve1.example.com',
                                     'admin@example.com', 'Europe/Berlin',
                                     password)

def make_network():
    return proxstrap.Network.NetworkConfig('eno1', '203.0.113.10/26',
                                           '203.0.113.1',
                                           'AA:BB:CC:00:11:22',
                                           '2001:db8:1:2::2/64')

def parse_toml(text):
    tomllib = pytest.importorskip('tomllib')
    return tomllib.loads(text)

# test proxstrap.Answer.build
def test_build_empty_password():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    with pytest.raises(proxstrap.ProxException.EmptyCredential):
        proxstrap.Answer.build(make_identity(''), None, decision)

def test_build_single_disk():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    assert(artifact.filesystem == 'ext4')
    assert(artifact.redundancy is None)
    assert(artifact.raid_level is None)
    assert(artifact.disk_list == ['/dev/sda'])

def test_build_two_disks():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB, 500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    assert(artifact.filesystem == 'zfs')
    assert(artifact.redundancy == proxstrap.Topology.MIRROR)
    assert(artifact.raid_level == 'raid1')

@pytest.mark.parametrize('count,level', [
    (3, 'raidz-1'),
    (4, 'raid10'),
    (5, 'raidz-1'),
    (6, 'raidz-2'),
    (10, 'raidz-3'),
])
def test_build_raid_levels(count, level):
    decision = proxstrap.Topology.resolve(make_disks(*([500 * GB] * count)))
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    assert(artifact.raid_level == level)
    assert(artifact.disk_list == decision.disk_paths())

def test_build_manual_order_preserved():
    disks = make_disks(500 * GB, 500 * GB, 500 * GB)
    decision = proxstrap.Topology.resolve(disks, proxstrap.Topology.MODE_MANUAL, [3, 1])
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    assert(artifact.disk_list == ['/dev/sdc', '/dev/sda'])

def test_build_from_answer():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), make_network(), decision,
                                      proxstrap.Answer.SOURCE_ANSWER,
                                      '185.12.64.1')
    assert(artifact.network_static['cidr'] == '203.0.113.10/26')
    assert(artifact.network_static['gateway'] == '203.0.113.1')
    assert(artifact.network_static['dns'] == '185.12.64.1')
    assert(artifact.network_static['filter.ID_NET_NAME_MAC'] == '*aabbcc001122')

def test_build_unknown_source():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    with pytest.raises(proxstrap.ProxException.ProxException):
        proxstrap.Answer.build(make_identity(), None, decision, 'from-nowhere')

# test proxstrap.Answer.render
def test_render_single_disk():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    text = proxstrap.Answer.render(proxstrap.Answer.build(make_identity(), None, decision))
    assert('zfs.raid' not in text)

    doc = parse_toml(text)
    assert(doc['global']['fqdn'] == 'pve1.example.com')
    assert(doc['global']['root_password'] == 's3cret')
    assert(doc['global']['reboot_on_error'] is False)
    assert(doc['network']['source'] == 'from-dhcp')
    assert(doc['disk-setup']['filesystem'] == 'ext4')
    assert(doc['disk-setup']['disk_list'] == ['/dev/sda'])

def test_render_mirror():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB, 500 * GB))
    text = proxstrap.Answer.render(proxstrap.Answer.build(make_identity(), None, decision))
    doc = parse_toml(text)
    assert(doc['disk-setup']['filesystem'] == 'zfs')
    assert(doc['disk-setup']['zfs']['raid'] == 'raid1')
    assert(doc['disk-setup']['disk_list'] == ['/dev/sda', '/dev/sdb'])

def test_render_from_answer():
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), make_network(), decision,
                                      proxstrap.Answer.SOURCE_ANSWER)
    doc = parse_toml(proxstrap.Answer.render(artifact))
    assert(doc['network']['source'] == 'from-answer')
    assert(doc['network']['cidr'] == '203.0.113.10/26')
    assert(doc['network']['filter']['ID_NET_NAME_MAC'] == '*aabbcc001122')

@pytest.mark.parametrize('password', [
    'quote"inside',
    'back\\slash',
    "single'quote",
    'new\nline',
    'tab\there',
    'del\x7fchar',
    'unicode é\U0001f600',
])
def test_render_password_quoting(password):
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    text = proxstrap.Answer.render(proxstrap.Answer.build(make_identity(password), None, decision))
    doc = parse_toml(text)
    assert(doc['global']['root_password'] == password)

# test proxstrap.Answer.write
def test_write(tmpdir):
    decision = proxstrap.Topology.resolve(make_disks(500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    path = os.path.join(str(tmpdir), 'work', 'answer.toml')

    assert(proxstrap.Answer.write(artifact, path) == path)
    with open(path, 'r') as f:
        assert(f.read() == proxstrap.Answer.render(artifact))
    assert(stat.S_IMODE(os.stat(path).st_mode) == 0o600)

def test_write_replaces_stale(tmpdir):
    path = os.path.join(str(tmpdir), 'answer.toml')
    with open(path, 'w') as f:
        f.write('stale')

    decision = proxstrap.Topology.resolve(make_disks(500 * GB, 500 * GB))
    artifact = proxstrap.Answer.build(make_identity(), None, decision)
    proxstrap.Answer.write(artifact, path)
    with open(path, 'r') as f:
        assert('stale' not in f.read())
