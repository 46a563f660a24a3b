"""
Class for automated Proxmox VE installation onto bare metal.

proxstrap installs Proxmox VE onto the disks of a machine that was booted
into a rescue system.  It builds an answer file for the Proxmox unattended
installer, runs the installer inside QEMU with the real disks passed
through, then boots the installed system once more to push its network and
identity configuration over ssh.

The simplest proxstrap program (without error handling or any advanced
features) would look something like:

import proxstrap.Answer
import proxstrap.Network
import proxstrap.Pipeline
import proxstrap.Qemu

identity = proxstrap.Answer.Identity("pve1", "pve1.example.com",
                                     "admin@example.com", "Europe/Berlin",
                                     "secret")
network = proxstrap.Network.detect()
ctx = proxstrap.Pipeline.InstallContext(identity, network, "/root/proxstrap")
qemu = proxstrap.Qemu.QemuManager(proxstrap.Qemu.is_uefi_mode(),
                                  proxstrap.Qemu.kvm_available(),
                                  ctx.work_dir)
proxstrap.Pipeline.Pipeline(ctx, qemu).run()
"""
