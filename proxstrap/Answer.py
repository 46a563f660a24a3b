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
Generation of the answer file for the unattended Proxmox installer
"""

import json
import logging
import os

import proxstrap.ProxException
import proxstrap.Topology
import proxstrap.proxutil

SOURCE_DHCP = 'from-dhcp'
SOURCE_ANSWER = 'from-answer'

SINGLE_DISK_FILESYSTEM = 'ext4'
REDUNDANT_FILESYSTEM = 'zfs'

# redundancy class -> zfs.raid value understood by the installer
ZFS_RAID_LEVELS = {
    proxstrap.Topology.MIRROR: 'raid1',
    proxstrap.Topology.STRIPED_MIRROR: 'raid10',
    proxstrap.Topology.PARITY_1: 'raidz-1',
    proxstrap.Topology.PARITY_2: 'raidz-2',
    proxstrap.Topology.PARITY_3: 'raidz-3',
}


class Identity(object):
    """
    Class that holds the identity of the installed system.
    """
    def __init__(self, hostname, fqdn, email, timezone, root_password,
                 keyboard="en-us", country="us"):
        self.hostname = hostname
        self.fqdn = fqdn
        self.email = email
        self.timezone = timezone
        self.root_password = root_password
        self.keyboard = keyboard
        self.country = country


class InstallArtifact(object):
    """
    Class that holds everything the unattended installer needs to know.
    The redundancy attribute is the resolved redundancy class, or None when
    the system is installed onto a single disk.
    """
    def __init__(self, identity, network_source, filesystem, redundancy,
                 disk_list, network_static=None):
        self.identity = identity
        self.network_source = network_source
        self.network_static = network_static or {}
        self.filesystem = filesystem
        self.redundancy = redundancy
        self.disk_list = list(disk_list)

    @property
    def raid_level(self):
        if self.redundancy is None:
            return None
        return ZFS_RAID_LEVELS[self.redundancy]


def _toml_string(value):
    """
    Internal function to quote a value as a TOML basic string.  The JSON
    string escapes are a subset of the TOML ones, except that TOML also
    wants DEL escaped and does not accept surrogate pairs.
    """
    return json.dumps(str(value), ensure_ascii=False).replace('\x7f', '\\u007f')


def _toml_list(values):
    return "[" + ", ".join([_toml_string(v) for v in values]) + "]"


def build(identity, network, decision, network_source=SOURCE_DHCP,
          nameserver=None):
    """
    Function to build the InstallArtifact for a TopologyDecision.  The
    network argument is only consulted for the 'from-answer' network source.
    """
    log = logging.getLogger('%s' % (__name__))

    if not identity.root_password:
        raise proxstrap.ProxException.EmptyCredential("The root password cannot be empty")

    if not decision.assigned:
        raise proxstrap.ProxException.NoDisksFound("No disks assigned to the install target")

    network_static = None
    if network_source == SOURCE_ANSWER:
        if network is None:
            raise proxstrap.ProxException.ProxException("Network source %s needs the network configuration" % (SOURCE_ANSWER))
        network_static = {
            'cidr': network.ipv4_cidr,
            'gateway': network.ipv4_gateway,
            'dns': nameserver or network.ipv4_gateway,
        }
        if network.mac_address:
            network_static['filter.ID_NET_NAME_MAC'] = '*' + network.mac_address.replace(':', '').lower()
    elif network_source != SOURCE_DHCP:
        raise proxstrap.ProxException.ProxException("Unknown network source %s" % (network_source))

    if len(decision.assigned) == 1:
        filesystem = SINGLE_DISK_FILESYSTEM
        redundancy = None
    else:
        filesystem = REDUNDANT_FILESYSTEM
        redundancy = decision.redundancy
        if redundancy not in ZFS_RAID_LEVELS:
            raise proxstrap.ProxException.ProxException("Redundancy class %s needs more than one disk" % (redundancy))

    artifact = InstallArtifact(identity, network_source, filesystem,
                               redundancy, decision.disk_paths(),
                               network_static)
    log.debug("Answer: filesystem %s, raid %s, disks %s", artifact.filesystem,
              artifact.raid_level, artifact.disk_list)

    return artifact


def render(artifact):
    """
    Function to render an InstallArtifact as the TOML answer file text.
    """
    ident = artifact.identity
    lines = ["[global]",
             "    keyboard = %s" % (_toml_string(ident.keyboard)),
             "    country = %s" % (_toml_string(ident.country)),
             "    fqdn = %s" % (_toml_string(ident.fqdn)),
             "    mailto = %s" % (_toml_string(ident.email)),
             "    timezone = %s" % (_toml_string(ident.timezone)),
             "    root_password = %s" % (_toml_string(ident.root_password)),
             "    reboot_on_error = false",
             "",
             "[network]",
             "    source = %s" % (_toml_string(artifact.network_source))]
    for key in sorted(artifact.network_static):
        lines.append("    %s = %s" % (key, _toml_string(artifact.network_static[key])))

    lines.extend(["",
                  "[disk-setup]",
                  "    filesystem = %s" % (_toml_string(artifact.filesystem))])
    if artifact.raid_level is not None:
        lines.append("    zfs.raid = %s" % (_toml_string(artifact.raid_level)))
    lines.append("    disk_list = %s" % (_toml_list(artifact.disk_list)))
    lines.append("")

    return "\n".join(lines) + "\n"


def write(artifact, path):
    """
    Function to write the answer file to path, replacing any previous one.
    """
    log = logging.getLogger('%s' % (__name__))

    proxstrap.proxutil.mkdir_p(os.path.dirname(path))
    proxstrap.proxutil.remove_if_exists(path)

    # the file contains the root password
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(render(artifact))

    log.info("%s created with %d disk(s)", path, len(artifact.disk_list))
    return path
