#!/usr/bin/python3

import sys
import os

try:
    import pytest
except ImportError:
    print('Unable to import pytest.  Is pytest installed?')
    sys.exit(1)

# Find proxstrap
prefix = '.'
for i in range(0,3):
    if os.path.isdir(os.path.join(prefix, 'proxstrap')):
        sys.path.insert(0, prefix)
        break
    else:
        prefix = '../' + prefix

try:
    import proxstrap.Media
    import proxstrap.ProxException
    import proxstrap.proxutil
except ImportError as e:
    print(e)
    print('Unable to import proxstrap.  Is proxstrap installed?')
    sys.exit(1)

# test proxstrap.Media.download_iso
def test_download_iso(tmpdir):
    src = os.path.join(str(tmpdir), 'proxmox-ve.iso')
    with open(src, 'wb') as f:
        f.write(b'\0' * 4096)
    dest = os.path.join(str(tmpdir), 'work', 'pve.iso')

    assert(proxstrap.Media.download_iso('file://' + src, dest) == dest)
    assert(os.path.getsize(dest) == 4096)

def test_download_iso_missing(tmpdir):
    dest = os.path.join(str(tmpdir), 'pve.iso')
    with pytest.raises(proxstrap.ProxException.ImageDownloadFailed):
        proxstrap.Media.download_iso('file://' + os.path.join(str(tmpdir), 'missing.iso'), dest)
    # the partial file is cleaned up
    assert(not os.path.exists(dest))

def test_download_iso_empty(tmpdir):
    src = os.path.join(str(tmpdir), 'empty.iso')
    open(src, 'wb').close()
    dest = os.path.join(str(tmpdir), 'pve.iso')
    with pytest.raises(proxstrap.ProxException.ImageDownloadFailed):
        proxstrap.Media.download_iso('file://' + src, dest)
    assert(not os.path.exists(dest))

# test proxstrap.Media.prepare_iso
def test_prepare_iso(tmpdir, monkeypatch):
    output = os.path.join(str(tmpdir), 'pve-autoinstall.iso')
    calls = []

    def fake_run(args, printfn=None, **kwargs):
        calls.append(args)
        with open(output, 'w') as f:
            f.write('iso')
        return proxstrap.proxutil.CommandResult(args, 0, '', '')

    monkeypatch.setattr(proxstrap.proxutil, 'run_command', fake_run)
    assert(proxstrap.Media.prepare_iso('/root/pve.iso', '/root/answer.toml', output) == output)
    assert(calls == [['proxmox-auto-install-assistant', 'prepare-iso', '/root/pve.iso',
                      '--fetch-from', 'iso', '--answer-file', '/root/answer.toml',
                      '--output', output]])

def test_prepare_iso_removes_stale_output(tmpdir, monkeypatch):
    output = os.path.join(str(tmpdir), 'pve-autoinstall.iso')
    with open(output, 'w') as f:
        f.write('stale')

    def fake_run(args, printfn=None, **kwargs):
        return proxstrap.proxutil.CommandResult(args, 0, '', '')

    monkeypatch.setattr(proxstrap.proxutil, 'run_command', fake_run)
    # the tool "succeeds" without writing anything; the stale file must not count
    with pytest.raises(proxstrap.ProxException.ImagePreparationFailed):
        proxstrap.Media.prepare_iso('/root/pve.iso', '/root/answer.toml', output)

def test_prepare_iso_failure(tmpdir, monkeypatch):
    def fake_run(args, printfn=None, **kwargs):
        return proxstrap.proxutil.CommandResult(args, 1, '', 'invalid answer file')

    monkeypatch.setattr(proxstrap.proxutil, 'run_command', fake_run)
    with pytest.raises(proxstrap.ProxException.ImagePreparationFailed) as excinfo:
        proxstrap.Media.prepare_iso('/root/pve.iso', '/root/answer.toml',
                                    os.path.join(str(tmpdir), 'out.iso'))
    assert('invalid answer file' in excinfo.value.log)

# test proxstrap.Media.prepare_packages
def test_prepare_packages_failure(tmpdir, monkeypatch):
    def fake_download(url, fd, show_progress, logger, timeout=60):
        return 10

    def fake_check_output(args, printfn=None, **kwargs):
        raise proxstrap.proxutil.SubprocessException("apt-get failed", 100, "E: no network")

    monkeypatch.setattr(proxstrap.proxutil, 'http_download_file', fake_download)
    monkeypatch.setattr(proxstrap.proxutil, 'subprocess_check_output', fake_check_output)

    with pytest.raises(proxstrap.ProxException.PackagePreparationFailed) as excinfo:
        proxstrap.Media.prepare_packages(os.path.join(str(tmpdir), 'sources', 'pve.list'),
                                         os.path.join(str(tmpdir), 'keys', 'pve.gpg'))
    assert(excinfo.value.log == "E: no network")

def test_prepare_packages(tmpdir, monkeypatch):
    calls = []

    def fake_download(url, fd, show_progress, logger, timeout=60):
        os.write(fd, b'key')
        return 3

    def fake_check_output(args, printfn=None, **kwargs):
        calls.append(args)
        assert(kwargs['env']['DEBIAN_FRONTEND'] == 'noninteractive')
        return ('', '', 0)

    monkeypatch.setattr(proxstrap.proxutil, 'http_download_file', fake_download)
    monkeypatch.setattr(proxstrap.proxutil, 'subprocess_check_output', fake_check_output)

    sources = os.path.join(str(tmpdir), 'sources', 'pve.list')
    proxstrap.Media.prepare_packages(sources, os.path.join(str(tmpdir), 'keys', 'pve.gpg'))

    with open(sources, 'r') as f:
        assert('pve-no-subscription' in f.read())
    assert(calls[-1][:3] == ['apt-get', 'install', '-yq'])
    assert('sshpass' in calls[-1])

def test_prepare_iso_failure_removes_partial_output(tmpdir, monkeypatch):
    output = os.path.join(str(tmpdir), 'pve-autoinstall.iso')

    def fake_run(args, printfn=None, **kwargs):
        with open(output, 'w') as f:
            f.write('half')
        return proxstrap.proxutil.CommandResult(args, 1, '', 'xorriso: no space left')

    monkeypatch.setattr(proxstrap.proxutil, 'run_command', fake_run)
    with pytest.raises(proxstrap.ProxException.ImagePreparationFailed):
        proxstrap.Media.prepare_iso('/root/pve.iso', '/root/answer.toml', output)
    assert(not os.path.exists(output))

def test_download_iso_open_fails(tmpdir, monkeypatch):
    def fake_open(path, flags, mode=0o777):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(proxstrap.Media.os, 'open', fake_open)
    with pytest.raises(proxstrap.ProxException.ImageDownloadFailed):
        proxstrap.Media.download_iso('file:///nonexistent.iso',
                                     os.path.join(str(tmpdir), 'pve.iso'))
