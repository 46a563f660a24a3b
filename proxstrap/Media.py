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
Preparation of the host tools and of the bootable install image
"""

import logging
import os

import requests

import proxstrap.ProxException
import proxstrap.proxutil

DEFAULT_ISO_URL = "https://enterprise.proxmox.com/iso/proxmox-ve_8.3-1.iso"

PVE_REPOSITORY = "deb http://download.proxmox.com/debian/pve bookworm pve-no-subscription\n"
PVE_RELEASE_KEY_URL = "https://enterprise.proxmox.com/debian/proxmox-release-bookworm.gpg"

HOST_PACKAGES = ["proxmox-auto-install-assistant", "xorriso", "ovmf",
                 "wget", "sshpass"]


def prepare_packages(sources_file="/etc/apt/sources.list.d/pve.list",
                     key_file="/etc/apt/trusted.gpg.d/proxmox-release-bookworm.gpg"):
    """
    Function to install the tools needed on the rescue system: the Proxmox
    auto-install assistant, the UEFI firmware for QEMU and sshpass.
    """
    log = logging.getLogger('%s' % (__name__))
    log.info("Installing packages")

    try:
        proxstrap.proxutil.mkdir_p(os.path.dirname(sources_file))
        with open(sources_file, 'w') as f:
            f.write(PVE_REPOSITORY)

        proxstrap.proxutil.mkdir_p(os.path.dirname(key_file))
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            proxstrap.proxutil.http_download_file(PVE_RELEASE_KEY_URL, fd,
                                                  False, log)
        finally:
            os.close(fd)

        env = dict(os.environ)
        env['DEBIAN_FRONTEND'] = 'noninteractive'
        for args in (["apt-get", "clean"],
                     ["apt-get", "update"],
                     ["apt-get", "install", "-yq"] + HOST_PACKAGES):
            proxstrap.proxutil.subprocess_check_output(args, printfn=log.debug,
                                                       env=env)
    except (proxstrap.ProxException.ProxException, requests.RequestException,
            OSError) as err:
        raise proxstrap.ProxException.PackagePreparationFailed("Failed to install packages: %s" % (err),
                                                               getattr(err, 'log', None))

    log.info("Packages installed")


def download_iso(url, dest):
    """
    Function to download the base install ISO from url to dest.  A partial
    download is removed before the error is raised.
    """
    log = logging.getLogger('%s' % (__name__))
    log.info("Downloading %s", url)

    proxstrap.proxutil.mkdir_p(os.path.dirname(dest))
    proxstrap.proxutil.remove_if_exists(dest)

    try:
        fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            size = proxstrap.proxutil.http_download_file(url, fd, True, log)
        finally:
            os.close(fd)
    except (requests.RequestException, OSError) as err:
        proxstrap.proxutil.remove_if_exists(dest)
        raise proxstrap.ProxException.ImageDownloadFailed("Failed to download %s: %s" % (url, err))

    if size == 0:
        proxstrap.proxutil.remove_if_exists(dest)
        raise proxstrap.ProxException.ImageDownloadFailed("Downloaded %s is empty" % (url))

    log.info("Downloaded %s to %s", proxstrap.proxutil.sizeof_fmt(size), dest)
    return dest


def prepare_iso(base_iso, answer_file, output):
    """
    Function to build the auto-install ISO from the base ISO and the
    answer file.  Any stale output from an earlier run is removed first, and
    a partial image is removed when the tool fails.
    """
    log = logging.getLogger('%s' % (__name__))
    log.info("Making %s", output)

    proxstrap.proxutil.remove_if_exists(output)

    args = ["proxmox-auto-install-assistant", "prepare-iso", base_iso,
            "--fetch-from", "iso", "--answer-file", answer_file,
            "--output", output]
    try:
        result = proxstrap.proxutil.run_command(args, printfn=log.debug)
    except (proxstrap.ProxException.ProxException, OSError) as err:
        proxstrap.proxutil.remove_if_exists(output)
        raise proxstrap.ProxException.ImagePreparationFailed(str(err))

    if not result.ok:
        proxstrap.proxutil.remove_if_exists(output)
        raise proxstrap.ProxException.ImagePreparationFailed("prepare-iso failed(%d)" % (result.retcode),
                                                             result.output)
    if not os.access(output, os.F_OK):
        raise proxstrap.ProxException.ImagePreparationFailed("prepare-iso did not create %s" % (output),
                                                             result.output)

    log.info("%s created", output)
    return output
