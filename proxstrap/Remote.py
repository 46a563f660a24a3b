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
Post-install configuration of the installed system over ssh
"""

import logging
import os
import shlex

import proxstrap.ProxException
import proxstrap.proxutil

DEFAULT_NAMESERVERS = ("185.12.64.1", "185.12.64.2", "1.1.1.1", "8.8.4.4")

# repositories that need a subscription; they break apt-get update
DISABLED_SOURCE_LISTS = ("/etc/apt/sources.list.d/pve-enterprise.list",
                         "/etc/apt/sources.list.d/ceph.list")

DISABLED_SERVICES = ("rpcbind", "rpcbind.socket")


class RemoteResult(object):
    """
    Class that records the outcome of a configuration run.  The failed
    member is a list of (description, CommandResult) tuples for the
    commands that exited non-zero or could not be run; those are not
    fatal.
    """
    def __init__(self):
        self.uploaded = []
        self.failed = []

    @property
    def ok(self):
        return not self.failed


class RemoteExecutor(object):
    """
    Class to run commands on, and copy files to, the system booted in a
    VirtualSession.  Authentication is by password through sshpass; the
    password is passed in the environment so it never shows up in the
    process list.
    """
    def __init__(self, session, credential, host='localhost', user='root',
                 known_hosts='~/.ssh/known_hosts', timeout=10):
        self.log = logging.getLogger('%s.%s' % (__name__,
                                                self.__class__.__name__))
        self.port = session.host_port
        self.credential = credential
        self.host = host
        self.user = user
        self.known_hosts = os.path.expanduser(known_hosts)
        self.timeout = timeout

    def _env(self):
        env = dict(os.environ)
        env['SSHPASS'] = self.credential
        return env

    def _ssh_options(self):
        # ServerAliveInterval protects against NAT firewall timeouts
        # on long-running commands with no output
        #
        # -F /dev/null makes sure that we don't use the global or per-user
        # configuration files
        return ["-F", "/dev/null",
                "-o", "ServerAliveInterval=30",
                "-o", "StrictHostKeyChecking=no",
                "-o", "ConnectTimeout=" + str(self.timeout),
                "-o", "UserKnownHostsFile=" + self.known_hosts]

    def forget_host_key(self):
        """
        Method to remove a stale host key for the forwarded endpoint from
        known_hosts.  Failure is ignored; no stale key is the common case.
        """
        args = ["ssh-keygen", "-f", self.known_hosts,
                "-R", "[%s]:%d" % (self.host, self.port)]
        try:
            result = proxstrap.proxutil.run_command(args, printfn=self.log.debug)
        except (proxstrap.ProxException.ProxException, OSError) as err:
            self.log.debug("Could not remove old host key: %s", err)
            return
        if not result.ok:
            self.log.debug("No old host key removed: %s", result.output.strip())

    def execute(self, command):
        """
        Method to execute a command on the remote system.  Returns the
        CommandResult; a non-zero exit is not raised.
        """
        self.log.debug("Executing '%s'", command)
        args = ["sshpass", "-e", "ssh", "-p", str(self.port)]
        args.extend(self._ssh_options())
        args.extend(["%s@%s" % (self.user, self.host), command])
        return proxstrap.proxutil.run_command(args, printfn=self.log.debug,
                                              env=self._env())

    def upload(self, local, destination):
        """
        Method to copy a file to the remote system.  Any failure raises
        ConfigurationPushFailed.
        """
        self.log.info("Uploading %s to %s", local, destination)
        args = ["sshpass", "-e", "scp", "-P", str(self.port)]
        args.extend(self._ssh_options())
        args.extend([local, "%s@%s:%s" % (self.user, self.host, destination)])
        try:
            result = proxstrap.proxutil.run_command(args, printfn=self.log.debug,
                                                    env=self._env())
        except (proxstrap.ProxException.ProxException, OSError) as err:
            raise proxstrap.ProxException.ConfigurationPushFailed("Failed to upload %s: %s" % (local, err))

        if not result.ok:
            raise proxstrap.ProxException.ConfigurationPushFailed("Failed to upload %s to %s(%d)" % (local, destination, result.retcode),
                                                                  result.output)

    def _best_effort(self, description, command, remote_result):
        """
        Internal method to run a command whose failure is logged and
        recorded, but not fatal.
        """
        self.log.info("%s", description)
        try:
            result = self.execute(command)
        except (proxstrap.ProxException.ProxException, OSError) as err:
            result = proxstrap.proxutil.CommandResult([command], -1, "", str(err))
        if not result.ok:
            self.log.warning("%s failed(%d): %s", description, result.retcode,
                             result.output.strip())
            remote_result.failed.append((description, result))
        return result

    def apply(self, files, hostname, nameservers=DEFAULT_NAMESERVERS):
        """
        Method to configure the installed system and power it off.  The
        files argument is a list of (local file, destination) tuples, as
        returned by TemplateSet.render().  Returns a RemoteResult.
        """
        remote_result = RemoteResult()

        self.forget_host_key()

        # a partial upload would leave network and identity inconsistent,
        # so any upload failure aborts here
        for local, destination in files:
            self.upload(local, destination)
            remote_result.uploaded.append(destination)

        for path in DISABLED_SOURCE_LISTS:
            self._best_effort("Disabling %s" % (path),
                              r"sed -i 's/^\([^#].*\)/# \1/g' %s" % (shlex.quote(path)),
                              remote_result)

        self._best_effort("Writing /etc/resolv.conf",
                          "printf 'nameserver %%s\\n' %s > /etc/resolv.conf" % (" ".join([shlex.quote(n) for n in nameservers])),
                          remote_result)

        self._best_effort("Setting hostname to %s" % (hostname),
                          "echo %s > /etc/hostname" % (shlex.quote(hostname)),
                          remote_result)

        self._best_effort("Disabling %s" % (" ".join(DISABLED_SERVICES)),
                          "systemctl disable --now %s" % (" ".join(DISABLED_SERVICES)),
                          remote_result)

        # ssh often loses the connection before poweroff returns; the exit
        # of the QEMU process is what tells us the system is down
        self.log.info("Powering off the VM")
        try:
            result = self.execute("poweroff")
        except (proxstrap.ProxException.ProxException, OSError) as err:
            self.log.warning("Could not run poweroff: %s", err)
        else:
            if not result.ok:
                self.log.debug("poweroff returned %d", result.retcode)

        return remote_result
