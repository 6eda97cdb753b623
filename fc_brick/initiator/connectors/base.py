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


import glob
import os
from typing import Optional, Tuple  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_log import log as logging

from fc_brick import exception
from fc_brick import initiator
from fc_brick.initiator import initiator_connector
from fc_brick.initiator import linuxscsi

LOG = logging.getLogger(__name__)


class BaseLinuxConnector(initiator_connector.InitiatorConnector):
    os_type = initiator.OS_TYPE_LINUX

    def __init__(self, root_helper: str, execute=None, *args, **kwargs):
        self._linuxscsi = linuxscsi.LinuxSCSI(root_helper, execute=execute)

        super(BaseLinuxConnector, self).__init__(root_helper, execute=execute,
                                                 *args, **kwargs)

    @staticmethod
    def get_connector_properties(root_helper: str, *args, **kwargs) -> dict:
        """Report whether this host can use multipath."""
        use_multipath = kwargs['multipath']
        if use_multipath:
            use_multipath = linuxscsi.LinuxSCSI.is_multipath_running(
                kwargs['enforce_multipath'], root_helper,
                execute=kwargs.get('execute'))
        return {'multipath': use_multipath}

    def check_valid_device(self, path: str, run_as_root: bool = True) -> bool:
        """Read one block from the device to see that it is usable."""
        try:
            _out, err = self._execute('dd', 'if=' + path, 'of=/dev/null',
                                      'count=1', run_as_root=run_as_root,
                                      root_helper=self._root_helper)
        except putils.ProcessExecutionError as exc:
            LOG.error("Cannot read from device %(path)s: %(error)s",
                      {'path': path, 'error': exc.stderr})
            return False
        # No dd summary means there was nothing to read
        return err is not None

    def get_all_available_volumes(self, connection_properties=None):
        search_path = self.get_search_path()
        if not search_path or not os.path.isdir(search_path):
            return []
        return glob.glob(os.path.join(search_path, '*'))

    def _find_mpath_by_realpath(self, device_name: str) -> Optional[str]:
        # multipath -l only knows about the kernel device names
        realpath = os.path.realpath(device_name)
        try:
            mpath_info = self._linuxscsi.find_multipath_device(realpath)
        except exception.CommandExecutionFailed as exc:
            LOG.warning("Could not look for a multipath device for "
                        "%(device)s: %(exc)s",
                        {'device': realpath, 'exc': exc})
            return None
        return mpath_info['device'] if mpath_info else None

    def _discover_mpath_device(self,
                               device_wwn: str,
                               connection_properties,
                               device_name: str) -> Tuple[str, Optional[str]]:
        """Find the multipath device that holds ``device_name``.

        Returns the device path and the multipath id.  When no multipath
        device exists the single path ``device_name`` is returned with a
        None id.
        """
        mpath = (self._linuxscsi.find_multipath_device_path(device_wwn) or
                 self._find_mpath_by_realpath(device_name))
        if mpath:
            device_path, multipath_id = mpath, device_wwn
        else:
            device_path, multipath_id = device_name, None
            LOG.debug("No multipath device for WWN %(wwn)s, using single "
                      "path %(device)s", {'wwn': device_wwn,
                                          'device': device_path})

        if not connection_properties.readonly:
            # Multipath maps can come up read-only for a short while
            try:
                self._linuxscsi.wait_for_rw(device_wwn, device_path)
            except exception.BlockDeviceReadOnly:
                LOG.warning('Device %s is still read-only, continuing.',
                            device_path)
        return device_path, multipath_id
