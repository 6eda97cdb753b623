#    Licensed under the Apache License, Version 2.0 (the "License"); you may
#    not use this file except in compliance with the License. You may obtain
#    a copy of the License at
#
#         http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
#    WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
#    License for the specific language governing permissions and limitations
#    under the License.

"""Connector entry points.

Collects the properties the storage backend needs to export a volume to this
host and builds the connector object for a protocol.
"""

import platform
import socket
import sys

from oslo_log import log as logging
from oslo_utils import importutils

from fc_brick import exception
from fc_brick import initiator
from fc_brick import utils

LOG = logging.getLogger(__name__)

connector_list = [
    'fc_brick.initiator.connectors.base.BaseLinuxConnector',
    'fc_brick.initiator.connectors.fibre_channel.FibreChannelConnector',
]

# Protocol name to connector class, used by factory()
_connector_mapping = {
    initiator.FIBRE_CHANNEL:
        'fc_brick.initiator.connectors.fibre_channel.FibreChannelConnector',
}


@utils.trace
def get_connector_properties(root_helper, my_ip, multipath, enforce_multipath,
                             host=None, execute=None):
    """Describe this host to the storage backend.

    Every connector in ``connector_list`` that runs on this platform and OS
    adds its own keys, for Fibre Channel the host WWPNs and WWNNs.

    With ``multipath=True`` the result says whether multipathd is running.
    If it is not, ``enforce_multipath=True`` raises an error and
    ``enforce_multipath=False`` reports ``multipath`` as False.

    :param root_helper: command prefix used to run commands as root
    :param my_ip: IP address of this host
    :param multipath: whether the caller wants to use multipath
    :param enforce_multipath: fail instead of falling back to a single path
    :param host: hostname, defaults to the local one
    :param execute: callable used to run the host commands
    :returns: dict of host properties
    """
    props = {
        'platform': platform.machine(),
        'os_type': sys.platform,
        'ip': my_ip,
        'host': host or socket.gethostname(),
    }

    for path in connector_list:
        conn_cls = importutils.import_class(path)
        if not (utils.platform_matches(props['platform'], conn_cls.platform)
                and utils.os_matches(props['os_type'], conn_cls.os_type)):
            continue
        conn_props = conn_cls.get_connector_properties(
            root_helper, host=host, multipath=multipath,
            enforce_multipath=enforce_multipath, execute=execute)
        props = utils.merge_dict(props, conn_props)

    return props


def factory(protocol, root_helper, use_multipath=True,
            device_scan_attempts=None, *args, **kwargs):
    """Build the connector object for a protocol name, case insensitive."""
    LOG.debug("Factory for %(protocol)s", {'protocol': protocol})

    class_path = _connector_mapping.get(protocol.upper())
    if class_path is None:
        raise exception.InvalidConnectorProtocol(protocol=protocol)

    kwargs['root_helper'] = root_helper
    kwargs['use_multipath'] = use_multipath
    kwargs['device_scan_attempts'] = device_scan_attempts
    return importutils.import_class(class_path)(*args, **kwargs)
