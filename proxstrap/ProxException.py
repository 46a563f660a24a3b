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
Exception classes for proxstrap.
"""


class ProxException(Exception):
    """
    Base class for all proxstrap errors.  In addition to the message, an
    exception may carry the name of the pipeline phase that raised it and
    any captured process log that helps diagnose the failure.
    """
    def __init__(self, msg, log=None):
        Exception.__init__(self, msg)
        self.phase = None
        self.log = log


# input and validation errors; raised before anything destructive happens

class NoDisksFound(ProxException):
    """
    No whole-disk block devices were found in the inventory.
    """
    pass


class InvalidManualSelection(ProxException):
    """
    A manual disk selection was empty or referenced a disk that does not
    exist.
    """
    pass


class EmptyCredential(ProxException):
    """
    The administrative credential for the installed system is empty.
    """
    pass


class TemplateRenderError(ProxException):
    """
    A template references a token that has no substitution.
    """
    pass


# external tool preparation errors; raised before any VM is started

class PackagePreparationFailed(ProxException):
    pass


class ImageDownloadFailed(ProxException):
    pass


class ImagePreparationFailed(ProxException):
    pass


# virtualization errors

class InstallationFailed(ProxException):
    """
    The unattended install exited with an error.  The assigned disks are
    left in an unknown state.
    """
    pass


class VirtualizationStartFailed(ProxException):
    pass


class ServiceUnreachable(ProxException):
    """
    The forwarded ssh port of the configure session never accepted a
    connection.
    """
    pass


class ConfigurationPushFailed(ProxException):
    pass


class PipelineError(ProxException):
    """
    A pipeline phase was entered without the artifacts it requires.  This
    is a programming error.
    """
    pass
