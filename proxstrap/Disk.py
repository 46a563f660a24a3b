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
Inventory of the block devices attached to the host
"""

import collections
import json
import logging
import re

import proxstrap.ProxException
import proxstrap.proxutil

# whole devices only; partitions like sda1 or nvme0n1p1 never match
WHOLE_DISK_RE = re.compile(r'^(sd[a-z]+|nvme[0-9]+n[0-9]+|vd[a-z]+|hd[a-z]+)$')

LSBLK_ARGS = ["lsblk", "-J", "-b", "-d", "-o", "NAME,SIZE,MODEL,TYPE"]


class DiskDescriptor(collections.namedtuple('DiskDescriptor',
                                            ['path', 'size', 'model'])):
    """
    Class that represents a single physical disk.  Objects of this type
    contain 3 pieces of information:

    path  - The stable device path, for instance /dev/sda.
    size  - The size of the device in bytes.
    model - The model string reported by the device (optional).
    """
    __slots__ = ()

    def human_size(self):
        """
        Method to get the size of the disk in binary units.
        """
        return proxstrap.proxutil.sizeof_fmt(self.size)

    def __str__(self):
        if self.model:
            return "%s (%s, %s)" % (self.path, self.human_size(), self.model)
        return "%s (%s)" % (self.path, self.human_size())


def parse_lsblk(output):
    """
    Function to turn the JSON output of lsblk into a list of DiskDescriptors,
    sorted by device name.  Anything that is not a whole disk under one of
    the recognized name prefixes is skipped.
    """
    try:
        doc = json.loads(output)
    except ValueError as err:
        raise proxstrap.ProxException.ProxException("Could not parse lsblk output: %s" % (err))

    disks = []
    for dev in doc.get("blockdevices", []):
        name = dev.get("name")
        if name is None or not WHOLE_DISK_RE.match(name):
            continue
        if dev.get("type", "disk") != "disk":
            continue

        model = dev.get("model")
        if model is not None:
            model = model.strip() or None

        disks.append(DiskDescriptor("/dev/" + name, int(dev.get("size") or 0),
                                    model))

    return sorted(disks, key=lambda d: d.path)


def list_disks():
    """
    Function to enumerate the whole disks attached to this host.  An empty
    list is returned if there are none.
    """
    log = logging.getLogger('%s' % (__name__))
    log.info("Detecting available disks")
    stdout, stderr_unused, retcode_unused = proxstrap.proxutil.subprocess_check_output(LSBLK_ARGS)

    disks = parse_lsblk(stdout)
    for disk in disks:
        log.info("  %s", disk)

    return disks
