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
Sequencing of the installation phases

The phases run in a fixed order, each one moving the InstallContext to the
next state:

Idle -> InventoryResolved -> ArtifactBuilt -> ImagePrepared ->
InstallRunning -> InstallComplete -> ConfigureSessionUp -> NetworkReady ->
RemoteConfigured -> TargetPoweredOff -> Done

The first error aborts the run.  A QEMU process that is still running at
that point is stopped before the error reaches the caller.
"""

import logging
import os

import proxstrap.Answer
import proxstrap.Disk
import proxstrap.Media
import proxstrap.ProxException
import proxstrap.Remote
import proxstrap.Template
import proxstrap.Topology

IDLE = 'Idle'
INVENTORY_RESOLVED = 'InventoryResolved'
ARTIFACT_BUILT = 'ArtifactBuilt'
IMAGE_PREPARED = 'ImagePrepared'
INSTALL_RUNNING = 'InstallRunning'
INSTALL_COMPLETE = 'InstallComplete'
CONFIGURE_SESSION_UP = 'ConfigureSessionUp'
NETWORK_READY = 'NetworkReady'
REMOTE_CONFIGURED = 'RemoteConfigured'
TARGET_POWERED_OFF = 'TargetPoweredOff'
DONE = 'Done'


class Phase(object):
    """
    Class that describes one step of the pipeline.  Objects of this type
    contain 5 pieces of information:

    name     - The name of the phase, used in logs and errors.
    state    - The state the context is in once the phase succeeded.
    requires - The context attributes that must be set on entry.
    action   - The callable that performs the phase.
    retries  - Whether the action retries internally (with a fixed bound)
               before failing.  A failed phase is never run again.
    """
    def __init__(self, name, state, requires, action, retries=False):
        self.name = name
        self.state = state
        self.requires = requires
        self.action = action
        self.retries = retries


class InstallContext(object):
    """
    Class that carries everything the phases share.  The inputs are set up
    front; the remaining attributes are filled in as the phases run.
    """
    def __init__(self, identity, network, work_dir,
                 mode=proxstrap.Topology.MODE_AUTO_ALL, selection=None,
                 disks=None):
        # inputs
        self.identity = identity
        self.network = network
        self.work_dir = work_dir
        self.mode = mode
        self.selection = selection
        self.disks = disks

        self.iso_url = proxstrap.Media.DEFAULT_ISO_URL
        self.iso_path = None
        self.prepare_packages = True
        self.template_dir = proxstrap.Template.default_template_dir()
        self.network_source = proxstrap.Answer.SOURCE_DHCP
        self.nameservers = proxstrap.Remote.DEFAULT_NAMESERVERS
        self.host_port = 5555
        self.guest_port = 22
        self.ssh_attempts = 60
        self.ssh_interval = 5
        self.known_hosts = '~/.ssh/known_hosts'

        # produced by the phases
        self.state = IDLE
        self.decision = None
        self.artifact = None
        self.answer_path = None
        self.rendered = None
        self.image_path = None
        self.session = None
        self.remote_result = None

    def path(self, name):
        return os.path.join(self.work_dir, name)


class Pipeline(object):
    """
    Class that runs the installation phases in order.  The qemu argument
    is the QemuManager that owns the VM processes.
    """
    def __init__(self, context, qemu):
        self.log = logging.getLogger('%s.%s' % (__name__,
                                                self.__class__.__name__))
        self.ctx = context
        self.qemu = qemu

        self.phases = (
            Phase('resolve', INVENTORY_RESOLVED, (), self._resolve),
            Phase('artifact', ARTIFACT_BUILT, ('decision',), self._build_artifact),
            Phase('image', IMAGE_PREPARED, ('answer_path', 'rendered'),
                  self._prepare_image),
            Phase('install', INSTALL_COMPLETE, ('image_path', 'decision'),
                  self._install),
            Phase('boot', CONFIGURE_SESSION_UP, ('decision',), self._boot),
            Phase('wait', NETWORK_READY, ('session',), self._wait,
                  retries=True),
            Phase('configure', REMOTE_CONFIGURED, ('session', 'rendered'),
                  self._configure),
            Phase('shutdown', TARGET_POWERED_OFF, ('session',), self._shutdown),
            Phase('finish', DONE, (), self._finish),
        )

    def _check_requires(self, phase, previous):
        if self.ctx.state != previous:
            raise proxstrap.ProxException.PipelineError("Phase %s entered in state %s, expected %s" % (phase.name, self.ctx.state, previous))
        for attr in phase.requires:
            if getattr(self.ctx, attr) is None:
                raise proxstrap.ProxException.PipelineError("Phase %s requires %s, which was not produced" % (phase.name, attr))

    def _resolve(self):
        if self.ctx.disks is None:
            self.ctx.disks = proxstrap.Disk.list_disks()
        self.ctx.decision = proxstrap.Topology.resolve(self.ctx.disks,
                                                       self.ctx.mode,
                                                       self.ctx.selection)

    def _build_artifact(self):
        nameserver = None
        if self.ctx.nameservers:
            nameserver = self.ctx.nameservers[0]
        self.ctx.artifact = proxstrap.Answer.build(self.ctx.identity,
                                                   self.ctx.network,
                                                   self.ctx.decision,
                                                   self.ctx.network_source,
                                                   nameserver)

        # render the templates now, so that a broken template stops the run
        # before anything is written to the disks
        templates = proxstrap.Template.TemplateSet.for_host(self.ctx.identity,
                                                            self.ctx.network)
        self.ctx.rendered = templates.render(self.ctx.template_dir,
                                             self.ctx.path('template_files'))

        self.ctx.answer_path = proxstrap.Answer.write(self.ctx.artifact,
                                                      self.ctx.path('answer.toml'))

    def _prepare_image(self):
        if self.ctx.prepare_packages:
            proxstrap.Media.prepare_packages()

        if self.ctx.iso_path is not None:
            if not os.access(self.ctx.iso_path, os.R_OK):
                raise proxstrap.ProxException.ImageDownloadFailed("Base ISO %s is not readable" % (self.ctx.iso_path))
            base_iso = self.ctx.iso_path
        else:
            base_iso = proxstrap.Media.download_iso(self.ctx.iso_url,
                                                    self.ctx.path('pve.iso'))

        self.ctx.image_path = proxstrap.Media.prepare_iso(base_iso,
                                                          self.ctx.answer_path,
                                                          self.ctx.path('pve-autoinstall.iso'))

    def _install(self):
        self.ctx.state = INSTALL_RUNNING
        self.log.warning("Installing Proxmox VE onto %s; this takes 5-10 minutes, do not interrupt",
                         ", ".join(self.ctx.decision.disk_paths()))
        self.qemu.run_install(self.ctx.image_path,
                              self.ctx.decision.disk_paths())

    def _boot(self):
        self.ctx.session = self.qemu.start_configure(self.ctx.decision.disk_paths(),
                                                     self.ctx.host_port,
                                                     self.ctx.guest_port)

    def _wait(self):
        self.qemu.wait_for_service(self.ctx.session, self.ctx.ssh_attempts,
                                   self.ctx.ssh_interval)

    def _configure(self):
        executor = proxstrap.Remote.RemoteExecutor(self.ctx.session,
                                                   self.ctx.identity.root_password,
                                                   known_hosts=self.ctx.known_hosts)
        self.ctx.remote_result = executor.apply(self.ctx.rendered,
                                                self.ctx.identity.hostname,
                                                self.ctx.nameservers)
        for description, result in self.ctx.remote_result.failed:
            self.log.warning("Skipped: %s (exit %d)", description, result.retcode)

    def _shutdown(self):
        self.qemu.wait_for_exit(self.ctx.session)
        self.ctx.session = None

    def _finish(self):
        self.log.info("Installation complete!")
        if self.ctx.network is not None and self.ctx.network.main_ipv4:
            self.log.info("After rebooting, Proxmox is available at https://%s:8006",
                          self.ctx.network.main_ipv4)

    def run(self):
        """
        Method to run every phase in order.  Returns the InstallContext in
        state Done.  A ProxException raised by a phase is re-raised with its
        phase attribute set to the name of that phase; a local I/O error is
        wrapped in a ProxException tagged the same way.
        """
        previous = IDLE
        phase = None
        try:
            for phase in self.phases:
                self._check_requires(phase, previous)
                self.log.info("Phase %s", phase.name)
                phase.action()
                self.ctx.state = phase.state
                previous = phase.state
        except proxstrap.ProxException.ProxException as err:
            if err.phase is None:
                err.phase = phase.name
            self.log.debug("Phase %s failed in state %s", phase.name, self.ctx.state)
            raise
        except (IOError, OSError) as err:
            self.log.debug("Phase %s failed in state %s", phase.name, self.ctx.state)
            wrapped = proxstrap.ProxException.ProxException("%s" % (err))
            wrapped.phase = phase.name
            raise wrapped from err
        finally:
            if self.ctx.session is not None:
                self.qemu.destroy(self.ctx.session)
                self.ctx.session = None

        return self.ctx
