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
Miscellaneous utility functions.
"""

import configparser
import errno
import logging
import os
import select
import socket
import subprocess
import time
import urllib.request

import requests

import proxstrap.ProxException


def generate_full_template_path(relative):
    """
    Function to find the absolute path to a packaged template file.
    """
    # the templates are installed to $pkg_path/templates, so we just need
    # to find it and generate the right path here
    if relative is None:
        raise proxstrap.ProxException.ProxException("The relative path cannot be None")

    pkg_path = os.path.dirname(__file__)
    return os.path.abspath(os.path.join(pkg_path, "templates", relative))


def executable_exists(program):
    """
    Function to find out whether an executable exists in the PATH
    of the user.  If so, the absolute path to the executable is returned.
    If not, an exception is raised.
    """
    def is_exe(fpath):
        """
        Helper method to check if a file exists and is executable
        """
        return os.path.exists(fpath) and os.access(fpath, os.X_OK)

    if program is None:
        raise proxstrap.ProxException.ProxException("Invalid program name passed")

    fpath, fname_unused = os.path.split(program)
    if fpath:
        if is_exe(program):
            return program
    else:
        for path in os.environ["PATH"].split(os.pathsep):
            exe_file = os.path.join(path, program)
            if is_exe(exe_file):
                return exe_file

    raise proxstrap.ProxException.ProxException("Could not find %s" % (program))


def write_bytes_to_fd(fd, buf):
    """
    Function to write all bytes in "buf" to "fd".  This handles both EINTR
    and short writes.
    """
    size = len(buf)
    offset = 0
    while size > 0:
        try:
            bytes_written = os.write(fd, buf[offset:])
            offset += bytes_written
            size -= bytes_written
        except OSError as err:
            # os.write() can raise on EINTR if a signal arrived before any
            # data was written; nothing was consumed, so just retry
            if err.errno == errno.EINTR:
                continue
            raise

    return offset


def string_to_bool(instr):
    """
    Function to take a string and determine whether it is True, Yes, False,
    or No.  It takes a single argument, which is the string to examine.

    Returns True if instr is "Yes" or "True", False if instr is "No"
    or "False", and None otherwise.
    """
    if instr is None:
        raise proxstrap.ProxException.ProxException("Input string was None!")
    lower = instr.lower()
    if lower == 'no' or lower == 'false':
        return False
    if lower == 'yes' or lower == 'true':
        return True
    return None


class SubprocessException(proxstrap.ProxException.ProxException):
    """
    Class for subprocess exceptions.  In addition to a error message, it
    also has a retcode member that has the returncode from the command.
    """
    def __init__(self, msg, retcode, log=None):
        proxstrap.ProxException.ProxException.__init__(self, msg, log)
        self.retcode = retcode


class CommandResult(object):
    """
    The outcome of one external command: the argument list, the exit status
    and the captured output.  Callers decide whether a non-zero status is
    fatal.
    """
    def __init__(self, args, retcode, stdout, stderr):
        self.args = args
        self.retcode = retcode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def ok(self):
        return self.retcode == 0

    @property
    def output(self):
        """
        The combined output of the command, stderr first.
        """
        return self.stderr + self.stdout

    def __repr__(self):
        return "CommandResult(%r, %d)" % (self.args, self.retcode)


def run_command(args, printfn=None, **kwargs):
    """
    Function to run a command, gather its output and return a CommandResult.
    A non-zero exit status is *not* an error here; see
    subprocess_check_output() for the raising variant.  If printfn is given,
    output is passed to it as it arrives.
    """
    if 'stdout' in kwargs:
        raise ValueError('stdout argument not allowed, it will be overridden.')
    if 'stderr' in kwargs:
        raise ValueError('stderr argument not allowed, it will be overridden.')

    executable_exists(args[0])

    process = subprocess.Popen(args, stdout=subprocess.PIPE,
                               stderr=subprocess.PIPE, **kwargs)

    poller = select.poll()
    select_POLLIN_POLLPRI = select.POLLIN | select.POLLPRI
    poller.register(process.stdout.fileno(), select_POLLIN_POLLPRI)
    poller.register(process.stderr.fileno(), select_POLLIN_POLLPRI)

    stdout = ''
    stderr = ''
    retcode = process.poll()
    while retcode is None:
        ready = poller.poll(1000)

        for fd, mode in ready:
            if mode & select_POLLIN_POLLPRI:
                data = os.read(fd, 4096)
                if not data:
                    poller.unregister(fd)
                else:
                    data = data.decode('utf-8', 'replace')
                    if printfn is not None:
                        printfn(data)
                    if fd == process.stdout.fileno():
                        stdout += data
                    else:
                        stderr += data
            else:
                # Ignore hang up or errors.
                poller.unregister(fd)

        retcode = process.poll()

    tmpout, tmperr = process.communicate()

    tmpout = tmpout.decode('utf-8', 'replace')
    tmperr = tmperr.decode('utf-8', 'replace')

    stdout += tmpout
    stderr += tmperr
    if printfn is not None:
        if tmperr:
            printfn(tmperr)
        if tmpout:
            printfn(tmpout)

    return CommandResult(args, retcode, stdout, stderr)


def subprocess_check_output(args, printfn=None, **kwargs):
    """
    Function to call a subprocess and gather the output.  Raises a
    SubprocessException if the command exits non-zero.
    """
    result = run_command(args, printfn=printfn, **kwargs)
    if not result.ok:
        raise SubprocessException("'%s' failed(%d): %s" % (' '.join(args),
                                                           result.retcode,
                                                           result.output),
                                  result.retcode, result.output)

    return (result.stdout, result.stderr, result.retcode)


def mkdir_p(path):
    """
    Function to make a directory and all intermediate directories as
    necessary.  The functionality differs from os.makedirs slightly, in
    that this function does *not* raise an error if the directory already
    exists.
    """
    if path is None:
        raise proxstrap.ProxException.ProxException("Path cannot be None")

    if path == '':
        # this can happen if the user did something like call os.path.dirname()
        # on a file without directories.  Since os.makedirs throws an exception
        # in that case, check for it here and allow it.
        return

    try:
        os.makedirs(path)
    except OSError as err:
        if err.errno != errno.EEXIST or not os.path.isdir(path):
            raise


def remove_if_exists(path):
    """
    Function to remove a file, ignoring the case where it is already gone.
    """
    try:
        os.unlink(path)
    except OSError as err:
        if err.errno != errno.ENOENT:
            raise


def config_get_key(config, section, key, default):
    """
    Function to retrieve config parameters out of the config file.
    """
    if config is not None and config.has_section(section) and config.has_option(section, key):
        return config.get(section, key)
    return default


def config_get_boolean_key(config, section, key, default):
    """
    Function to retrieve boolean config parameters out of the config file.
    """
    value = config_get_key(config, section, key, None)
    if value is None:
        return default

    retval = string_to_bool(value)
    if retval is None:
        raise proxstrap.ProxException.ProxException("Configuration parameter '%s' must be True, Yes, False, or No" % (key))

    return retval


def config_get_int_key(config, section, key, default):
    """
    Function to retrieve integer config parameters out of the config file.
    """
    value = config_get_key(config, section, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise proxstrap.ProxException.ProxException("Configuration parameter '%s' must be an integer" % (key))


def config_get_path(config, section, key, default):
    """
    Function to get an user-expanded path out of the config file at
    the passed in section and key.  If the value is not in the config
    file, then the default value is returned.  If the expanded path is
    not absolute, an error is raised.
    """
    path = os.path.expanduser(config_get_key(config, section, key, default))
    if not os.path.isabs(path):
        raise proxstrap.ProxException.ProxException("Config key '%s' must have an absolute path" % (key))
    return path


def parse_config(config_file):
    """
    Function to parse the configuration file.  If the passed in config_file is
    None, then the default configuration file is used.
    """
    config = configparser.ConfigParser()
    if config_file is not None:
        # an explicitly requested config file must exist, so let open()
        # raise if it does not
        with open(os.path.expanduser(config_file)) as f:
            config.read_file(f)
    else:
        # The config file was not passed in, so we want to use one of the
        # defaults.  First we check to see if a ~/.proxstrap/proxstrap.cfg
        # exists; if it does, we use that.  Otherwise we fall back to the
        # system-wide version in /etc/proxstrap/proxstrap.cfg.  If neither of
        # those exist, we don't throw an error but instead use the built-in
        # defaults.
        parsed = config.read(os.path.expanduser("~/.proxstrap/proxstrap.cfg"))
        if not parsed and os.geteuid() == 0:
            config.read("/etc/proxstrap/proxstrap.cfg")

    return config


def default_work_dir():
    """
    Function to get the default path to the work directory, where the
    answer file, images, rendered templates and logs are written.
    """
    if os.geteuid() == 0:
        return "/root/proxstrap"
    return "~/.proxstrap/work"


class LocalFileAdapter(requests.adapters.BaseAdapter):
    '''
    This class implements an adapter for requests so we can properly deal with file://
    local files.
    '''
    @staticmethod
    def _chkpath(method, path):
        """Return an HTTP status for the given filesystem path."""
        if method.lower() in ('put', 'delete'):
            return 501, "Not Implemented"
        elif method.lower() not in ('get', 'head', 'post'):
            return 405, "Method Not Allowed"
        elif os.path.isdir(path):
            return 400, "Path Not A File"
        elif not os.path.isfile(path):
            return 404, "File Not Found"
        elif not os.access(path, os.R_OK):
            return 403, "Access Denied"
        return 200, "OK"

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        """Return the file specified by the given request"""
        path = os.path.normcase(os.path.normpath(urllib.request.url2pathname(request.path_url)))
        response = requests.Response()

        response.status_code, response.reason = self._chkpath(request.method, path)
        if response.status_code == 200 and request.method.lower() != 'head':
            try:
                response.raw = open(path, 'rb')
            except (OSError, IOError) as err:
                response.status_code = 500
                response.reason = str(err)

        if isinstance(request.url, bytes):
            response.url = request.url.decode('utf-8')
        else:
            response.url = request.url

        if response.status_code == 200:
            response.headers['Content-Length'] = str(os.path.getsize(path))
        response.headers['Accept-Ranges'] = 'bytes'
        response.request = request
        response.connection = self

        return response

    def close(self):
        pass


def http_download_file(url, fd, show_progress, logger, timeout=60):
    """
    Function to download a file from url to file descriptor fd.  HTTP error
    statuses raise requests.HTTPError.
    """
    with requests.Session() as requests_session:
        requests_session.mount('file://', LocalFileAdapter())
        response = requests_session.get(url, stream=True, allow_redirects=True,
                                        headers={'Accept-Encoding': ''},
                                        timeout=timeout)
        response.raise_for_status()
        file_size = int(response.headers.get('Content-Length', 0))
        chunk_size = 10 * 1024 * 1024
        done = 0
        for chunk in response.iter_content(chunk_size):
            write_bytes_to_fd(fd, chunk)
            done += len(chunk)
            if show_progress and logger is not None:
                logger.debug("%dkB of %dkB" % (done / 1024, file_size / 1024))

    return done


def retry_loop(attempts, interval, cb, msg, cb_arg=None):
    '''
    A function to deal with waiting for an event to occur by polling.  The
    callback is called at most "attempts" times, with "interval" seconds of
    sleep after each call that returns False, so a loop that never succeeds
    waits attempts * interval seconds in total.  If the callback returns
    True, the loop quits immediately and this function returns True.
    Otherwise this function returns False once the attempts are used up.
    '''
    log = logging.getLogger('%s' % (__name__))
    for attempt in range(1, attempts + 1):
        if cb(cb_arg):
            return True

        log.debug("%s, attempt %d/%d", msg, attempt, attempts)
        time.sleep(interval)

    return False


def port_open(host, port, timeout=1):
    """
    Function to check whether a TCP port accepts connections.
    """
    try:
        sock = socket.create_connection((host, port), timeout)
    except (OSError, socket.timeout):
        return False
    sock.close()
    return True


def sizeof_fmt(num, suffix="B"):
    """
    Give a convenient human-readable representation of a large size in
    bytes.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return "%3.1f%s%s" % (num, unit, suffix)
        num /= 1024.0
    return "%.1f%s%s" % (num, 'Yi', suffix)
