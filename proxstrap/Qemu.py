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
Management of the transient QEMU processes that install and configure the
target system on the real disks
"""

import logging
import os
import subprocess

import proxstrap.ProxException
import proxstrap.proxutil

DEFAULT_BINARY = "qemu-system-x86_64"
DEFAULT_OVMF = "/usr/share/ovmf/OVMF.fd"


def is_uefi_mode(firmware_dir="/sys/firmware/efi"):
    """
    Function to find out whether the host was booted with UEFI firmware.
    """
    return os.path.isdir(firmware_dir)


def kvm_available(device="/dev/kvm"):
    """
    Function to find out whether hardware accelerated virtualization can be
    used on this host.
    """
    if not os.path.exists(device):
        return False
    try:
        fd = os.open(device, os.O_RDWR)
    except OSError:
        return False
    os.close(fd)
    return True


def _read_tail(path, lines=50):
    """
    Internal function to get the last lines of a log file, or an empty
    string if it cannot be read.
    """
    try:
        with open(path, 'r', errors='replace') as f:
            return ''.join(f.readlines()[-lines:])
    except (IOError, OSError):
        return ''


class VirtualSession(object):
    """
    Class that represents one running QEMU process.  The session is owned
    by the QemuManager that started it; others only read the forwarded
    port from it.
    """
    def __init__(self, process, log_path, uefi, host_port=None):
        self.process = process
        self.pid = process.pid
        self.log_path = log_path
        self.uefi = uefi
        self.host_port = host_port

    def alive(self):
        """
        Method to check whether the QEMU process is still running.
        """
        return self.process is not None and self.process.poll() is None

    def invalidate(self):
        self.process = None

    def log_tail(self, lines=50):
        return _read_tail(self.log_path, lines)


class QemuManager(object):
    """
    Class that starts, watches and tears down the QEMU processes.
    """
    def __init__(self, uefi, kvm, log_dir, binary=DEFAULT_BINARY, cpus=4,
                 memory=4096, ovmf=DEFAULT_OVMF):
        self.log = logging.getLogger('%s.%s' % (__name__,
                                                self.__class__.__name__))
        self.uefi = uefi
        self.kvm = kvm
        self.log_dir = log_dir
        self.binary = binary
        self.cpus = cpus
        self.memory = memory
        self.ovmf = ovmf

        if self.uefi:
            self.log.info("UEFI supported, booting with UEFI firmware")
        else:
            self.log.info("UEFI not supported, booting in legacy mode")
        if not self.kvm:
            self.log.warning("KVM device not available; falling back to software emulation.  Performance will be degraded.")

    def build_args(self, disks, boot_image=None, forward=None):
        """
        Method to generate the QEMU command line.  The disks are the device
        paths to pass through, boot_image is the install ISO (install
        session only), and forward is a (host port, guest port) tuple for
        the user-mode network of the configure session.
        """
        args = [self.binary]
        if self.kvm:
            args.extend(["-enable-kvm", "-cpu", "host"])
        else:
            args.extend(["-cpu", "max"])
        if self.uefi:
            args.extend(["-bios", self.ovmf])
        args.extend(["-smp", str(self.cpus), "-m", str(self.memory)])

        if boot_image is not None:
            args.extend(["-boot", "d", "-cdrom", boot_image])
        if forward is not None:
            args.extend(["-device", "e1000,netdev=net0",
                         "-netdev", "user,id=net0,hostfwd=tcp::%d-:%d" % forward])

        for disk in disks:
            args.extend(["-drive", "file=%s,format=raw,media=disk,if=virtio" % (disk)])

        if boot_image is not None:
            args.append("-no-reboot")
        args.extend(["-display", "none"])

        return args

    def run_install(self, image, disks):
        """
        Method to run the unattended install and wait for QEMU to exit.  The
        installer powers the VM off when it is done; a non-zero exit raises
        InstallationFailed carrying the QEMU output.
        """
        self.log.info("Running install from %s onto %s", image, ", ".join(disks))

        args = self.build_args(disks, boot_image=image)
        self.log.debug("QEMU command: %s", " ".join(args))

        try:
            result = proxstrap.proxutil.run_command(args, printfn=self.log.debug)
        except (proxstrap.ProxException.ProxException, OSError) as err:
            raise proxstrap.ProxException.VirtualizationStartFailed("Could not start %s: %s" % (self.binary, err))

        proxstrap.proxutil.mkdir_p(self.log_dir)
        log_path = os.path.join(self.log_dir, "install.log")
        with open(log_path, 'w') as f:
            f.write(result.output)

        if not result.ok:
            raise proxstrap.ProxException.InstallationFailed("Install exited with status %d, see %s" % (result.retcode, log_path),
                                                             result.output)

        self.log.info("Install succeeded")
        return result

    def start_configure(self, disks, host_port=5555, guest_port=22):
        """
        Method to boot the installed system in the background with the guest
        ssh port forwarded to host_port.  Returns the VirtualSession; the
        caller must eventually call wait_for_exit() or destroy().
        """
        self.log.info("Booting installed system with ssh forwarded to port %d", host_port)

        args = self.build_args(disks, forward=(host_port, guest_port))
        self.log.debug("QEMU command: %s", " ".join(args))

        proxstrap.proxutil.mkdir_p(self.log_dir)
        log_path = os.path.join(self.log_dir, "qemu_output.log")
        try:
            proxstrap.proxutil.executable_exists(args[0])
            with open(log_path, 'wb') as logf:
                process = subprocess.Popen(args, stdin=subprocess.DEVNULL,
                                           stdout=logf,
                                           stderr=subprocess.STDOUT,
                                           start_new_session=True)
        except (proxstrap.ProxException.ProxException, OSError) as err:
            raise proxstrap.ProxException.VirtualizationStartFailed("Could not start %s: %s" % (self.binary, err))

        self.log.info("QEMU started with PID %d", process.pid)
        return VirtualSession(process, log_path, self.uefi, host_port)

    def wait_for_service(self, session, attempts=60, interval=5,
                         host='localhost'):
        """
        Method to poll the forwarded port of a session until it accepts a
        connection.  Raises ServiceUnreachable if it does not within
        attempts tries spaced interval seconds apart, or if QEMU exits.
        """
        self.log.info("Waiting for ssh to become available on port %d", session.host_port)

        def _ssh_cb(sess):
            '''
            The retry_loop callback to look for the ssh port to open.
            '''
            if not sess.alive():
                raise proxstrap.ProxException.ServiceUnreachable("QEMU exited before ssh became available",
                                                                 sess.log_tail())
            return proxstrap.proxutil.port_open(host, sess.host_port)

        if not proxstrap.proxutil.retry_loop(attempts, interval, _ssh_cb,
                                             "Waiting for ssh on port %d" % (session.host_port),
                                             session):
            raise proxstrap.ProxException.ServiceUnreachable("ssh is not available after %d seconds.  Check the system manually." % (attempts * interval),
                                                             session.log_tail())

        self.log.info("ssh is available on port %d", session.host_port)

    def wait_for_exit(self, session):
        """
        Method to wait for the QEMU process of a session to exit, with no
        timeout.  The session is invalidated however the wait ends.
        """
        if session.process is None:
            return None

        self.log.info("Waiting for QEMU process %d to exit", session.pid)
        try:
            retcode = session.process.wait()
        finally:
            if session.alive():
                self.destroy(session)
            session.invalidate()

        self.log.info("QEMU process has exited (%d)", retcode)
        return retcode

    def destroy(self, session, timeout=10):
        """
        Method to forcibly stop the QEMU process of a session.  Errors are
        logged, never raised.
        """
        process = session.process
        if process is None:
            return

        try:
            if process.poll() is None:
                self.log.info("Stopping QEMU process %d", session.pid)
                process.terminate()
                try:
                    process.wait(timeout)
                except subprocess.TimeoutExpired:
                    self.log.warning("QEMU process %d did not stop, killing it", session.pid)
                    process.kill()
                    process.wait(timeout)
        except (OSError, subprocess.TimeoutExpired) as err:
            self.log.warning("Failed to stop QEMU process %d: %s", session.pid, err)
        finally:
            session.invalidate()
