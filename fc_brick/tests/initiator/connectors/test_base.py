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

import os
from unittest import mock

import fixtures
from oslo_concurrency import processutils as putils

from fc_brick import exception
from fc_brick.initiator.connectors import base
from fc_brick.initiator import fc_conn_props
from fc_brick.initiator import linuxscsi
from fc_brick.privileged import rootwrap as priv_rootwrap
from fc_brick.tests import base as test_base


class FakeLinuxConnector(base.BaseLinuxConnector):
    search_path = None

    def connect_volume(self, connection_properties):
        return {'type': 'block', 'path': '/dev/sdb'}

    def disconnect_volume(self, connection_properties, device_info):
        pass

    def get_volume_paths(self, connection_properties):
        return []

    def get_search_path(self):
        return self.search_path

    def extend_volume(self, connection_properties):
        return None


class BaseLinuxConnectorTestCase(test_base.TestCase):

    def setUp(self):
        super(BaseLinuxConnectorTestCase, self).setUp()
        self.connector = FakeLinuxConnector('sudo')
        self.conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5', 'target_lun': 1})

    def test_get_connector_properties(self):
        with mock.patch.object(priv_rootwrap, 'execute') as mock_exec:
            mock_exec.return_value = ('', '')
            props = base.BaseLinuxConnector.get_connector_properties(
                'sudo', multipath=True, enforce_multipath=True)
            self.assertEqual({'multipath': True}, props)

            props = base.BaseLinuxConnector.get_connector_properties(
                'sudo', multipath=False, enforce_multipath=True)
            self.assertEqual({'multipath': False}, props)
            mock_exec.assert_called_once_with('multipathd', 'show', 'status',
                                              run_as_root=True,
                                              root_helper='sudo')

        with mock.patch.object(priv_rootwrap, 'execute',
                               side_effect=putils.ProcessExecutionError):
            self.assertRaises(
                putils.ProcessExecutionError,
                base.BaseLinuxConnector.get_connector_properties,
                'sudo', multipath=True, enforce_multipath=True)

            props = base.BaseLinuxConnector.get_connector_properties(
                'sudo', multipath=True, enforce_multipath=False)
            self.assertEqual({'multipath': False}, props)

    def test_get_connector_properties_custom_execute(self):
        execute = mock.Mock(return_value=('', ''))
        props = base.BaseLinuxConnector.get_connector_properties(
            'sudo', multipath=True, enforce_multipath=True, execute=execute)
        self.assertEqual({'multipath': True}, props)
        execute.assert_called_once_with('multipathd', 'show', 'status',
                                        run_as_root=True, root_helper='sudo')

    def test_check_valid_device(self):
        execute = mock.Mock(return_value=('', ''))
        self.connector.set_execute(execute)
        self.assertTrue(self.connector.check_valid_device('/dev/sdb'))
        execute.assert_called_once_with('dd', 'if=/dev/sdb', 'of=/dev/null',
                                        'count=1', run_as_root=True,
                                        root_helper='sudo')

    def test_check_valid_device_no_info(self):
        self.connector.set_execute(mock.Mock(return_value=('', None)))
        self.assertFalse(self.connector.check_valid_device('/dev/sdb'))

    @mock.patch.object(base, 'LOG')
    def test_check_valid_device_error(self, mock_log):
        self.connector.set_execute(mock.Mock(
            side_effect=putils.ProcessExecutionError(stderr='I/O error')))
        self.assertFalse(self.connector.check_valid_device('/dev/sdb',
                                                           run_as_root=False))
        mock_log.error.assert_called_once()

    def test_get_all_available_volumes(self):
        path = self.useFixture(fixtures.TempDir()).path
        names = ('pci-0000:05:00.2-fc-0x500a0981891b8dc5-lun-1',
                 'pci-0000:05:00.3-fc-0x500a0981891b8dc5-lun-1')
        for name in names:
            open(os.path.join(path, name), 'w').close()
        self.connector.search_path = path

        expected = [os.path.join(path, name) for name in names]
        self.assertCountEqual(expected,
                              self.connector.get_all_available_volumes())

    @mock.patch.object(os.path, 'isdir', return_value=False)
    def test_get_all_available_volumes_path_not_dir(self, mock_isdir):
        self.connector.search_path = '/dev/disk/by-path'
        self.assertEqual([], self.connector.get_all_available_volumes())
        mock_isdir.assert_called_once_with('/dev/disk/by-path')

    def test_get_all_available_volumes_no_path(self):
        self.assertEqual([], self.connector.get_all_available_volumes())

    @mock.patch.object(linuxscsi.LinuxSCSI, 'wait_for_rw')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device_path',
                       return_value='/dev/disk/by-id/dm-uuid-mpath-3600')
    def test_discover_mpath_device(self, mock_find_path, mock_find_device,
                                   mock_wait_rw):
        res = self.connector._discover_mpath_device(
            '3600', self.conn_props, '/dev/disk/by-path/pci-0000:05:00.2-fc-'
            '0x500a0981891b8dc5-lun-1')

        self.assertEqual(('/dev/disk/by-id/dm-uuid-mpath-3600', '3600'), res)
        mock_find_path.assert_called_once_with('3600')
        mock_find_device.assert_not_called()
        mock_wait_rw.assert_called_once_with(
            '3600', '/dev/disk/by-id/dm-uuid-mpath-3600')

    @mock.patch.object(os.path, 'realpath', return_value='/dev/sdb')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'wait_for_rw')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device',
                       return_value={'device': '/dev/mapper/mpatha',
                                     'id': '3600', 'name': 'mpatha',
                                     'devices': []})
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device_path',
                       return_value=None)
    def test_discover_mpath_device_by_realpath(self, mock_find_path,
                                               mock_find_device, mock_wait_rw,
                                               mock_realpath):
        link = '/dev/disk/by-path/pci-0000:05:00.2-fc-0x500a0981891b8dc5-lun-1'
        res = self.connector._discover_mpath_device('3600', self.conn_props,
                                                    link)

        self.assertEqual(('/dev/mapper/mpatha', '3600'), res)
        mock_realpath.assert_called_once_with(link)
        mock_find_device.assert_called_once_with('/dev/sdb')
        mock_wait_rw.assert_called_once_with('3600', '/dev/mapper/mpatha')

    @mock.patch.object(os.path, 'realpath', return_value='/dev/sdb')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'wait_for_rw')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device_path',
                       return_value=None)
    def test_discover_mpath_device_single_path(self, mock_find_path,
                                               mock_find_device, mock_wait_rw,
                                               mock_realpath):
        link = '/dev/disk/by-path/pci-0000:05:00.2-fc-0x500a0981891b8dc5-lun-1'
        failure = exception.CommandExecutionFailed(cmd='multipath -l')
        for result in (None, failure):
            mock_find_device.reset_mock()
            if isinstance(result, Exception):
                mock_find_device.side_effect = result
            else:
                mock_find_device.return_value = result

            res = self.connector._discover_mpath_device('3600',
                                                        self.conn_props, link)

            # The symlink is returned, never the real path
            self.assertEqual((link, None), res)
            mock_find_device.assert_called_once_with('/dev/sdb')

    @mock.patch.object(linuxscsi.LinuxSCSI, 'wait_for_rw')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device_path',
                       return_value='/dev/mapper/3600')
    def test_discover_mpath_device_readonly(self, mock_find_path,
                                            mock_wait_rw):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5', 'access_mode': 'ro'})
        res = self.connector._discover_mpath_device('3600', conn_props,
                                                    '/dev/sdb')
        self.assertEqual(('/dev/mapper/3600', '3600'), res)
        mock_wait_rw.assert_not_called()

    @mock.patch.object(base, 'LOG')
    @mock.patch.object(linuxscsi.LinuxSCSI, 'wait_for_rw',
                       side_effect=exception.BlockDeviceReadOnly(
                           device='/dev/mapper/3600'))
    @mock.patch.object(linuxscsi.LinuxSCSI, 'find_multipath_device_path',
                       return_value='/dev/mapper/3600')
    def test_discover_mpath_device_still_readonly(self, mock_find_path,
                                                  mock_wait_rw, mock_log):
        res = self.connector._discover_mpath_device('3600', self.conn_props,
                                                    '/dev/sdb')
        self.assertEqual(('/dev/mapper/3600', '3600'), res)
        mock_log.warning.assert_called_once_with(mock.ANY, '/dev/mapper/3600')
