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

import abc

from fc_brick import executor
from fc_brick import initiator


class InitiatorConnector(executor.Executor, metaclass=abc.ABCMeta):
    """Interface every volume connector implements.

    ``platform`` and ``os_type`` tell get_connector_properties on which hosts
    the connector can report properties.
    """

    platform = initiator.PLATFORM_ALL
    os_type = initiator.OS_TYPE_ALL

    def __init__(self, root_helper, execute=None,
                 device_scan_attempts=None, *args, **kwargs):
        super(InitiatorConnector, self).__init__(root_helper, execute=execute,
                                                 *args, **kwargs)
        # None means use the [fc_brick] device_scan_attempts option
        self.device_scan_attempts = device_scan_attempts

    @staticmethod
    @abc.abstractmethod
    def get_connector_properties(root_helper, *args, **kwargs):
        """Host properties the storage backend needs to export a volume."""
        pass

    @abc.abstractmethod
    def check_valid_device(self, path, run_as_root=True):
        """Whether the block device at path can be read.

        :param path: device node or symlink to check
        :param run_as_root: read the device as root
        :returns: bool
        """
        pass

    @abc.abstractmethod
    def connect_volume(self, connection_properties):
        """Attach a volume and return where it can be found on the host.

        Single target port and LUN::

            {'target_wwn': '500a0981891b8dc5',
             'target_lun': 1,
             'access_mode': 'rw'}

        Several target ports, each one with its own LUN, and an initiator map
        that limits which host ports are rescanned::

            {'target_wwns': ['20210002ac00383d', '20220002ac00383d'],
             'target_luns': [1, 2],
             'initiator_target_map': {
                 '100010604b010459': ['20210002ac00383d'],
                 '100010604b01045d': ['20220002ac00383d']},
             'enable_wildcard_scan': False,
             'use_multipath': True}

        :param connection_properties: dict or already normalized properties
        :returns: dict with the ``type``, ``path`` and ``scsi_wwn`` of the
                  device, plus ``multipath_id`` when a multipath was found
        """
        pass

    @abc.abstractmethod
    def disconnect_volume(self, connection_properties, device_info):
        """Remove every host device of a volume.

        :param connection_properties: same properties given to connect_volume
        :param device_info: dict returned by connect_volume
        """
        pass

    @abc.abstractmethod
    def get_volume_paths(self, connection_properties):
        """Paths of the volume that currently exist on the host."""
        pass

    @abc.abstractmethod
    def get_search_path(self):
        """Directory where the volume paths are created."""
        pass

    @abc.abstractmethod
    def extend_volume(self, connection_properties):
        """Make the host see the new size of an extended volume.

        :returns: new size in bytes, None if it could not be read
        """
        pass

    @abc.abstractmethod
    def get_all_available_volumes(self, connection_properties=None):
        """Every entry in the search path, used to check leftovers."""
        pass
