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
    import proxstrap.Disk
    import proxstrap.ProxException
    import proxstrap.proxutil
except ImportError as e:
    print(e)
    print('Unable to import proxstrap.  Is proxstrap installed?')
    sys.exit(1)

lsblk_output = json.dumps({
    "blockdevices": [
        {"name": "sdb", "size": 2000398934016, "model": "ST2000DM008-2FR1  ", "type": "disk"},
        {"name": "sda", "size": 1000204886016, "model": "Samsung SSD 870", "type": "disk"},
        {"name": "sda1", "size": 536870912, "model": None, "type": "part"},
        {"name": "nvme0n1", "size": 512110190592, "model": "KXG60ZNV512G", "type": "disk"},
        {"name": "nvme0n1p1", "size": 1048576, "model": None, "type": "part"},
        {"name": "loop0", "size": 4096, "model": None, "type": "loop"},
        {"name": "sr0", "size": 1073741312, "model": "Virtual CDROM", "type": "rom"},
        {"name": "vda", "size": 10737418240, "model": None, "type": "disk"},
    ]
})

# test proxstrap.Disk.parse_lsblk
def test_parse_lsblk_whole_disks_only():
    disks = proxstrap.Disk.parse_lsblk(lsblk_output)
    assert([d.path for d in disks] == ['/dev/nvme0n1', '/dev/sda', '/dev/sdb', '/dev/vda'])

def test_parse_lsblk_fields():
    disks = proxstrap.Disk.parse_lsblk(lsblk_output)
    sdb = disks[2]
    assert(sdb.size == 2000398934016)
    assert(sdb.model == 'ST2000DM008-2FR1')
    assert(disks[3].model is None)

def test_parse_lsblk_nothing_usable():
    output = json.dumps({"blockdevices": [{"name": "loop0", "size": 1, "model": None, "type": "loop"}]})
    assert(proxstrap.Disk.parse_lsblk(output) == [])

def test_parse_lsblk_bad_json():
    with pytest.raises(proxstrap.ProxException.ProxException):
        proxstrap.Disk.parse_lsblk("not json")

def test_disk_str():
    disk = proxstrap.Disk.DiskDescriptor('/dev/sda', 1024 * 1024 * 1024, 'QEMU HARDDISK')
    assert(str(disk) == '/dev/sda (1.0GiB, QEMU HARDDISK)')

def test_disk_str_no_model():
    disk = proxstrap.Disk.DiskDescriptor('/dev/sda', 2048, None)
    assert(str(disk) == '/dev/sda (2.0KiB)')

# test proxstrap.Disk.list_disks
def test_list_disks(monkeypatch):
    calls = []

    def fake_check_output(args, printfn=None, **kwargs):
        calls.append(args)
        return (lsblk_output, '', 0)

    monkeypatch.setattr(proxstrap.proxutil, 'subprocess_check_output', fake_check_output)

    disks = proxstrap.Disk.list_disks()
    assert(calls == [proxstrap.Disk.LSBLK_ARGS])
    assert(len(disks) == 4)
