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
Selection of the redundancy layout for the install target disks
"""

import logging
import re

import proxstrap.ProxException

SINGLE = 'single'
MIRROR = 'mirror'
STRIPED_MIRROR = 'striped-mirror'
PARITY_1 = 'parity-1'
PARITY_2 = 'parity-2'
PARITY_3 = 'parity-3'

MODE_AUTO_ALL = 'auto-all'
MODE_SMALLEST_PAIR = 'auto-smallest-pair-for-system'
MODE_MANUAL = 'manual-subset'

MODES = (MODE_AUTO_ALL, MODE_SMALLEST_PAIR, MODE_MANUAL)


def redundancy_for_count(count):
    """
    Function to map a number of assigned disks to a redundancy class.

    The table is deliberately not monotonic in fault tolerance: four disks
    get striped mirrors for performance, while five go back to single
    parity.  Existing deployments depend on it, so keep it as is.
    """
    if count < 1:
        raise proxstrap.ProxException.NoDisksFound("No disks to build a topology from")
    if count == 1:
        return SINGLE
    if count == 2:
        return MIRROR
    if count == 3:
        return PARITY_1
    if count == 4:
        return STRIPED_MIRROR
    if count == 5:
        return PARITY_1
    if count <= 9:
        return PARITY_2
    return PARITY_3


class TopologyDecision(object):
    """
    Class that holds the result of disk topology resolution.  Objects of
    this type contain 3 pieces of information:

    redundancy - The redundancy class applied to the assigned disks.
    assigned   - The ordered tuple of DiskDescriptors the system is
                 installed onto.
    excluded   - The tuple of DiskDescriptors that are left untouched.
    """
    def __init__(self, redundancy, assigned, excluded):
        self._redundancy = redundancy
        self._assigned = tuple(assigned)
        self._excluded = tuple(excluded)

    @property
    def redundancy(self):
        return self._redundancy

    @property
    def assigned(self):
        return self._assigned

    @property
    def excluded(self):
        return self._excluded

    def disk_paths(self):
        """
        Method to get the device paths of the assigned disks, in order.
        """
        return [disk.path for disk in self._assigned]

    def __repr__(self):
        return "TopologyDecision(%s, assigned=%s, excluded=%s)" % (self._redundancy,
                                                                  self.disk_paths(),
                                                                  [d.path for d in self._excluded])


def parse_selection(text):
    """
    Function to parse a manual disk selection such as "1,3 4" into a list
    of 1-based indices.
    """
    if text is None:
        return []

    selection = []
    for token in re.split(r'[\s,]+', text.strip()):
        if token == '':
            continue
        try:
            selection.append(int(token))
        except ValueError:
            raise proxstrap.ProxException.InvalidManualSelection("Invalid disk number '%s'" % (token))

    return selection


def _manual_subset(disks, selection):
    """
    Internal function to pick the disks named by a list of 1-based indices.
    """
    if not selection:
        raise proxstrap.ProxException.InvalidManualSelection("No disks were selected")

    seen = set()
    for index in selection:
        if index < 1 or index > len(disks):
            raise proxstrap.ProxException.InvalidManualSelection("Disk number %d is out of range 1-%d" % (index, len(disks)))
        if index in seen:
            raise proxstrap.ProxException.InvalidManualSelection("Disk number %d was selected twice" % (index))
        seen.add(index)

    assigned = [disks[index - 1] for index in selection]
    excluded = [disk for i, disk in enumerate(disks) if i + 1 not in seen]

    return assigned, excluded


def resolve(disks, mode=MODE_AUTO_ALL, selection=None):
    """
    Function to decide which disks the system is installed onto and with
    which redundancy class.  The disks argument is the ordered inventory,
    mode is one of MODES, and selection is the list of 1-based disk indices
    used in MODE_MANUAL.  Returns a TopologyDecision.
    """
    log = logging.getLogger('%s' % (__name__))

    disks = list(disks)
    if not disks:
        raise proxstrap.ProxException.NoDisksFound("No suitable disks found")

    if mode == MODE_AUTO_ALL:
        assigned = disks
        excluded = []
        redundancy = redundancy_for_count(len(assigned))
    elif mode == MODE_SMALLEST_PAIR:
        if len(disks) < 2:
            log.warning("Only one disk available, cannot build a mirror for the system")
            assigned = disks
            excluded = []
            redundancy = SINGLE
        else:
            # sorted() is stable, so equally sized disks keep inventory order
            smallest = sorted(disks, key=lambda d: d.size)[:2]
            assigned = [disk for disk in disks if disk in smallest]
            excluded = [disk for disk in disks if disk not in smallest]
            redundancy = MIRROR
    elif mode == MODE_MANUAL:
        assigned, excluded = _manual_subset(disks, selection)
        redundancy = redundancy_for_count(len(assigned))
    else:
        raise proxstrap.ProxException.ProxException("Unknown disk mode %s" % (mode))

    decision = TopologyDecision(redundancy, assigned, excluded)
    log.info("Disk setup: %s on %s", decision.redundancy,
             ", ".join(decision.disk_paths()))
    if decision.excluded:
        log.info("Left untouched: %s",
                 ", ".join([disk.path for disk in decision.excluded]))

    return decision
