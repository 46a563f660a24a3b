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
Rendering of the configuration files pushed to the installed system
"""

import collections
import logging
import os
import re

import proxstrap.ProxException
import proxstrap.proxutil

TOKEN_RE = re.compile(r'\{\{([A-Za-z0-9_]+)\}\}')

# template name -> tokens that must be substituted
TEMPLATE_TOKENS = collections.OrderedDict([
    ('hosts', ('MAIN_IPV4', 'FQDN', 'HOSTNAME', 'MAIN_IPV6')),
    ('interfaces', ('INTERFACE_NAME', 'MAIN_IPV4_CIDR', 'MAIN_IPV4_GW',
                    'MAC_ADDRESS', 'IPV6_CIDR', 'PRIVATE_IP_CIDR',
                    'PRIVATE_SUBNET', 'FIRST_IPV6_CIDR')),
    ('99-proxmox.conf', ()),
    ('sources.list', ()),
])

# template name -> path on the installed system, in push order
TEMPLATE_DESTINATIONS = collections.OrderedDict([
    ('hosts', '/etc/hosts'),
    ('interfaces', '/etc/network/interfaces'),
    ('99-proxmox.conf', '/etc/sysctl.d/99-proxmox.conf'),
    ('sources.list', '/etc/apt/sources.list'),
])


def render_text(name, text, substitutions):
    """
    Function to substitute every {{TOKEN}} in text.  Every token that
    appears in the text and every token declared for the template must
    have a value in substitutions; an empty string is a valid value, None
    is not.  Raises TemplateRenderError otherwise.
    """
    required = set(TEMPLATE_TOKENS.get(name, ()))
    required.update(TOKEN_RE.findall(text))

    missing = sorted([token for token in required
                      if substitutions.get(token) is None])
    if missing:
        raise proxstrap.ProxException.TemplateRenderError("Template %s has no value for %s" % (name, ", ".join(missing)))

    return TOKEN_RE.sub(lambda match: str(substitutions[match.group(1)]), text)


class TemplateSet(object):
    """
    Class that maps each template name to its token substitutions.
    """
    def __init__(self, substitutions):
        self.log = logging.getLogger('%s.%s' % (__name__,
                                                self.__class__.__name__))
        self.substitutions = collections.OrderedDict()
        for name in TEMPLATE_DESTINATIONS:
            self.substitutions[name] = dict(substitutions.get(name, {}))

    @classmethod
    def for_host(cls, identity, network):
        """
        Method to build the standard TemplateSet from the identity of the
        installed system and the host network configuration.
        """
        return cls({
            'hosts': {
                'MAIN_IPV4': network.main_ipv4,
                'FQDN': identity.fqdn,
                'HOSTNAME': identity.hostname,
                'MAIN_IPV6': network.main_ipv6,
            },
            'interfaces': {
                'INTERFACE_NAME': network.interface,
                'MAIN_IPV4_CIDR': network.ipv4_cidr,
                'MAIN_IPV4_GW': network.ipv4_gateway,
                'MAC_ADDRESS': network.mac_address,
                'IPV6_CIDR': network.ipv6_cidr,
                'PRIVATE_IP_CIDR': network.private_ip_cidr,
                'PRIVATE_SUBNET': network.private_subnet,
                'FIRST_IPV6_CIDR': network.first_ipv6_cidr,
            },
        })

    def render(self, source_dir, output_dir):
        """
        Method to render every template from source_dir into output_dir.
        Returns the list of (rendered file, destination path) pairs in
        push order.  Nothing is written unless every template renders.
        """
        rendered = []
        for name, destination in TEMPLATE_DESTINATIONS.items():
            try:
                with open(os.path.join(source_dir, name), 'r') as f:
                    text = f.read()
            except (IOError, OSError) as err:
                raise proxstrap.ProxException.TemplateRenderError("Could not read template %s: %s" % (name, err))
            rendered.append((name, destination,
                             render_text(name, text, self.substitutions[name])))

        proxstrap.proxutil.mkdir_p(output_dir)
        files = []
        for name, destination, text in rendered:
            outname = os.path.join(output_dir, name)
            with open(outname, 'w') as f:
                f.write(text)
            self.log.debug("Rendered %s for %s", outname, destination)
            files.append((outname, destination))

        return files


def default_template_dir():
    """
    Function to get the directory of the packaged templates.
    """
    return proxstrap.proxutil.generate_full_template_path('')
