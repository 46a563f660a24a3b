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
Command line front end of proxstrap-install
"""

import configparser
import getopt
import getpass
import logging
import os
import sys

import proxstrap.Answer
import proxstrap.Disk
import proxstrap.Network
import proxstrap.Pipeline
import proxstrap.ProxException
import proxstrap.Qemu
import proxstrap.Topology
import proxstrap.proxutil

PASSWORD_ENV = "PROXSTRAP_ROOT_PASSWORD"

DEFAULT_HOSTNAME = "proxmox"
DEFAULT_FQDN = "proxmox.example.com"
DEFAULT_TIMEZONE = "America/Phoenix"
DEFAULT_EMAIL = "admin@example.com"
DEFAULT_PRIVATE_SUBNET = "192.168.1.10/24"

DEBUG_LEVELS = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO,
                3: logging.DEBUG}


class UsageError(Exception):
    pass


def usage(name):
    print("Usage: %s [OPTIONS]" % (name))
    print(" OPTIONS:")
    print("  -c <config_file>\tproxstrap configuration file")
    print("  -d <loglevel>\t\tTurn on debugging output to level <loglevel>")
    print("\t\t\tThe valid loglevels are:")
    print("\t\t\t  0 - errors only (this is the default)")
    print("\t\t\t  1 - errors and warnings")
    print("\t\t\t  2 - errors, warnings, and information")
    print("\t\t\t  3 - all messages")
    print("  -m <mode>\t\tDisk mode, one of:")
    print("\t\t\t  %s (default)" % (proxstrap.Topology.MODE_AUTO_ALL))
    print("\t\t\t  %s" % (proxstrap.Topology.MODE_SMALLEST_PAIR))
    print("\t\t\t  %s" % (proxstrap.Topology.MODE_MANUAL))
    print("  -s <disks>\t\tDisk numbers for %s, e.g. \"1,3\"" % (proxstrap.Topology.MODE_MANUAL))
    print("  -i <interface>\tUplink interface (default: the default route)")
    print("  -n <hostname>\t\tHostname of the installed system")
    print("  -f <fqdn>\t\tFully qualified domain name")
    print("  -t <timezone>\t\tTimezone, e.g. Europe/Berlin")
    print("  -e <email>\t\tAdministrator email address")
    print("  -p <subnet>\t\tPrivate subnet for guests, e.g. 192.168.1.10/24")
    print("  -l, --list-disks\tPrint the disks that can be installed onto and exit")
    print("  -r, --reboot\t\tReboot into the installed system when done")
    print("  -h\t\t\tPrint this help message")
    print(" The root password is read from %s, or prompted for." % (PASSWORD_ENV))


def parse_args(argv):
    """
    Function to parse the command line into a dictionary of options.
    Raises UsageError on bad input.
    """
    try:
        opts, args = getopt.gnu_getopt(argv, 'c:d:m:s:i:n:f:t:e:p:lrh',
                                       ['config=', 'debug=', 'mode=',
                                        'select=', 'interface=', 'hostname=',
                                        'fqdn=', 'timezone=', 'email=',
                                        'private-subnet=', 'list-disks',
                                        'reboot', 'help'])
    except getopt.GetoptError as err:
        raise UsageError(str(err))

    if args:
        raise UsageError("Unexpected arguments: %s" % (' '.join(args)))

    options = {'config': None, 'debug': 0, 'mode': None, 'select': None,
               'interface': None, 'hostname': None, 'fqdn': None,
               'timezone': None, 'email': None, 'private_subnet': None,
               'list_disks': False, 'reboot': False, 'help': False}

    for o, a in opts:
        if o in ("-c", "--config"):
            options['config'] = a
        elif o in ("-d", "--debug"):
            try:
                level = int(a)
            except ValueError:
                raise UsageError("Debug level must be 0, 1, 2 or 3")
            if level not in DEBUG_LEVELS:
                raise UsageError("Debug level must be 0, 1, 2 or 3")
            options['debug'] = level
        elif o in ("-m", "--mode"):
            if a not in proxstrap.Topology.MODES:
                raise UsageError("Unknown disk mode %s" % (a))
            options['mode'] = a
        elif o in ("-s", "--select"):
            options['select'] = a
        elif o in ("-i", "--interface"):
            options['interface'] = a
        elif o in ("-n", "--hostname"):
            options['hostname'] = a
        elif o in ("-f", "--fqdn"):
            options['fqdn'] = a
        elif o in ("-t", "--timezone"):
            options['timezone'] = a
        elif o in ("-e", "--email"):
            options['email'] = a
        elif o in ("-p", "--private-subnet"):
            options['private_subnet'] = a
        elif o in ("-l", "--list-disks"):
            options['list_disks'] = True
        elif o in ("-r", "--reboot"):
            options['reboot'] = True
        elif o in ("-h", "--help"):
            options['help'] = True

    if options['select'] is not None and options['mode'] is None:
        options['mode'] = proxstrap.Topology.MODE_MANUAL

    return options


def read_password(prompt=getpass.getpass):
    """
    Function to get the root password of the installed system, either from
    the environment or by asking until a non-empty one is given.
    """
    password = os.environ.get(PASSWORD_ENV)
    if password:
        return password

    while True:
        password = prompt("Enter the root password for the installed system: ")
        if password:
            return password
        print("The root password cannot be empty")


def print_disks(disks):
    print("Available disks:")
    for index, disk in enumerate(disks, 1):
        print("  %d) %s" % (index, disk))


def build_context(options, config, password):
    """
    Function to put together the InstallContext from the command line
    options, the configuration file and the built-in defaults.  Command line
    options win over the configuration file.
    """
    get = proxstrap.proxutil.config_get_key

    def choose(option, section, key, default):
        if options.get(option) is not None:
            return options[option]
        return get(config, section, key, default)

    identity = proxstrap.Answer.Identity(choose('hostname', 'identity', 'hostname', DEFAULT_HOSTNAME),
                                         choose('fqdn', 'identity', 'fqdn', DEFAULT_FQDN),
                                         choose('email', 'identity', 'email', DEFAULT_EMAIL),
                                         choose('timezone', 'identity', 'timezone', DEFAULT_TIMEZONE),
                                         password,
                                         get(config, 'system', 'keyboard', 'en-us'),
                                         get(config, 'system', 'country', 'us'))

    private_subnet = choose('private_subnet', 'identity', 'private_subnet',
                            DEFAULT_PRIVATE_SUBNET)
    network = proxstrap.Network.detect(options.get('interface'), private_subnet)

    work_dir = proxstrap.proxutil.config_get_path(config, 'paths', 'work_dir',
                                                  proxstrap.proxutil.default_work_dir())

    mode = options.get('mode') or proxstrap.Topology.MODE_AUTO_ALL
    selection = None
    if mode == proxstrap.Topology.MODE_MANUAL:
        selection = proxstrap.Topology.parse_selection(options.get('select'))

    ctx = proxstrap.Pipeline.InstallContext(identity, network, work_dir, mode,
                                            selection)

    ctx.template_dir = proxstrap.proxutil.config_get_path(config, 'paths',
                                                          'template_dir',
                                                          ctx.template_dir)
    ctx.iso_url = get(config, 'media', 'iso_url', ctx.iso_url)
    iso_path = get(config, 'media', 'iso_path', None)
    if iso_path:
        ctx.iso_path = proxstrap.proxutil.config_get_path(config, 'media',
                                                          'iso_path', None)
    ctx.prepare_packages = proxstrap.proxutil.config_get_boolean_key(config, 'media',
                                                                     'prepare_packages',
                                                                     ctx.prepare_packages)
    ctx.host_port = proxstrap.proxutil.config_get_int_key(config, 'ssh',
                                                          'host_port',
                                                          ctx.host_port)
    ctx.guest_port = proxstrap.proxutil.config_get_int_key(config, 'ssh',
                                                           'guest_port',
                                                           ctx.guest_port)
    ctx.known_hosts = get(config, 'ssh', 'known_hosts', ctx.known_hosts)
    ctx.ssh_attempts = proxstrap.proxutil.config_get_int_key(config, 'timeouts',
                                                             'ssh_attempts',
                                                             ctx.ssh_attempts)
    ctx.ssh_interval = proxstrap.proxutil.config_get_int_key(config, 'timeouts',
                                                             'ssh_interval',
                                                             ctx.ssh_interval)
    nameservers = get(config, 'system', 'nameservers', None)
    if nameservers:
        ctx.nameservers = tuple(nameservers.replace(',', ' ').split())
    ctx.network_source = get(config, 'system', 'network_source',
                             ctx.network_source)

    return ctx


def build_qemu(config, work_dir):
    """
    Function to create the QemuManager for this host.
    """
    get = proxstrap.proxutil.config_get_key
    return proxstrap.Qemu.QemuManager(proxstrap.Qemu.is_uefi_mode(),
                                      proxstrap.Qemu.kvm_available(),
                                      work_dir,
                                      get(config, 'qemu', 'binary',
                                          proxstrap.Qemu.DEFAULT_BINARY),
                                      proxstrap.proxutil.config_get_int_key(config, 'qemu', 'cpus', 4),
                                      proxstrap.proxutil.config_get_int_key(config, 'qemu', 'memory', 4096),
                                      get(config, 'qemu', 'ovmf',
                                          proxstrap.Qemu.DEFAULT_OVMF))


def main(argv=None):
    """
    Entry point of proxstrap-install.  Returns the process exit code.
    """
    if argv is None:
        argv = sys.argv
    name = os.path.basename(argv[0])

    try:
        options = parse_args(argv[1:])
    except UsageError as err:
        print(str(err))
        usage(name)
        return 2

    if options['help']:
        usage(name)
        return 0

    logging.basicConfig(level=DEBUG_LEVELS[options['debug']],
                        format="%(levelname)s:%(name)s:%(message)s")

    if os.geteuid() != 0:
        print("%s must be run as root" % (name))
        return 2

    try:
        config = proxstrap.proxutil.parse_config(options['config'])
    except (IOError, OSError, configparser.Error) as err:
        print("Could not read configuration file: %s" % (err))
        return 2

    if options['list_disks']:
        try:
            print_disks(proxstrap.Disk.list_disks())
        except proxstrap.ProxException.ProxException as err:
            print("Could not list disks: %s" % (err))
            return 1
        return 0

    try:
        password = read_password()
        ctx = build_context(options, config, password)
        qemu = build_qemu(config, ctx.work_dir)
        proxstrap.proxutil.mkdir_p(ctx.work_dir)

        if ctx.mode == proxstrap.Topology.MODE_MANUAL:
            ctx.disks = proxstrap.Disk.list_disks()
            print_disks(ctx.disks)

        proxstrap.Pipeline.Pipeline(ctx, qemu).run()
    except proxstrap.ProxException.ProxException as err:
        print("Phase %s failed: %s" % (err.phase or "setup", err))
        if err.log:
            print(err.log)
        return 1
    except (IOError, OSError) as err:
        print("Setup failed: %s" % (err))
        return 1
    except KeyboardInterrupt:
        print("Interrupted")
        return 1

    print("Installation complete!")
    if ctx.network.main_ipv4:
        print("After rebooting, Proxmox is available at https://%s:8006" % (ctx.network.main_ipv4))

    if options['reboot']:
        try:
            result = proxstrap.proxutil.run_command(["reboot"])
        except (proxstrap.ProxException.ProxException, OSError) as err:
            print("Reboot failed: %s" % (err))
            return 1
        if not result.ok:
            print("Reboot failed: %s" % (result.output.strip()))
            return 1
    else:
        print("Reboot the host to start the installed system")

    return 0
