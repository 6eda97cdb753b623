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

"""Exceptions for the fc-brick library."""

from oslo_concurrency import processutils as putils
from oslo_log import log as logging

from fc_brick.i18n import _


LOG = logging.getLogger(__name__)


class BrickException(Exception):
    """Base class of the library errors.

    Subclasses set ``message`` to a ``%`` template that is filled with the
    keyword arguments given when raising, for example
    ``BlockDeviceReadOnly(device='/dev/sdb')``.
    """
    message = _("An unknown exception occurred.")
    code = 500

    def __init__(self, message=None, **kwargs):
        kwargs.setdefault('code', self.code)
        self.kwargs = kwargs

        if not message:
            message = self._format_message(kwargs)

        # Kept in msg since "message" is the class template
        self.msg = message
        super(BrickException, self).__init__(message)

    def _format_message(self, kwargs):
        try:
            return self.message % kwargs
        except Exception:
            LOG.exception("Could not format %(cls)s message %(msg)r with "
                          "%(kwargs)s",
                          {'cls': type(self).__name__, 'msg': self.message,
                           'kwargs': kwargs})
            return self.message


class NotFound(BrickException):
    message = _("Resource could not be found.")
    code = 404


class Invalid(BrickException):
    message = _("Unacceptable parameters.")
    code = 400


class InvalidConnectionProperties(Invalid):
    message = _("Unable to find potential volume paths for FC device with "
                "luns: %(luns)s and wwns: %(wwns)s.")


class InvalidConnectorProtocol(Invalid):
    message = _("Invalid InitiatorConnector protocol specified %(protocol)s")


class InvalidLunId(Invalid):
    message = _("LUN id %(lun)r is not an integer.")


class InvalidTargetWWN(Invalid):
    message = _("Target WWN %(wwn)r is not a hexadecimal string.")


class NoFibreChannelHostsFound(NotFound):
    message = _("We are unable to locate any Fibre Channel devices.")


class NoFibreChannelVolumeDeviceFound(NotFound):
    message = _("Unable to find a Fibre Channel volume device.")


class VolumePathsNotFound(NotFound):
    message = _("Could not find any paths for the volume.")


class NoDevicesToRemove(NotFound):
    message = _("No device to remove for targets %(targets)s.")


class BlockDeviceReadOnly(BrickException):
    message = _("Block device %(device)s is Read-Only.")


class CommandExecutionFailed(BrickException):
    message = _("Failed to execute command %(cmd)s")


class DeviceRemovalFailed(BrickException):
    message = _("Failed to remove device %(device)s: %(reason)s")


class ExecutionTimeout(putils.ProcessExecutionError):
    pass
