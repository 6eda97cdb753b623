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

import copy
import operator
from unittest import mock

import ddt

from fc_brick import exception
from fc_brick.initiator import fc_conn_props
from fc_brick.tests import base


@ddt.ddt
class ParseLunTestCase(base.TestCase):

    @ddt.data((1, 1), ('42', 42), (0, 0), (16384, 16384))
    @ddt.unpack
    def test_parse_lun(self, lun, expected):
        self.assertEqual(expected, fc_conn_props.parse_lun(lun))

    @ddt.data('abc', '', None, 1.5, True, [1])
    def test_parse_lun_invalid(self, lun):
        self.assertRaises(exception.InvalidLunId,
                          fc_conn_props.parse_lun, lun)


@ddt.ddt
class FCConnPropsTestCase(base.TestCase):

    @ddt.data(
        # Single wwn as a string
        ({'target_wwn': '500A0981891B8DC5', 'target_lun': 1},
         (('500a0981891b8dc5', 1),)),
        # Single wwn in a list and default lun
        ({'target_wwn': ['500a0981891b8dc5']},
         (('500a0981891b8dc5', 0),)),
        # Multiple wwns sharing a lun
        ({'target_wwn': ['500a0981891b8dc5', '500A0981991B8DC5'],
          'target_lun': '1'},
         (('500a0981891b8dc5', 1), ('500a0981991b8dc5', 1))),
        # Paired wwns and luns, plural keys win
        ({'target_wwn': 'ignored', 'target_lun': 9,
          'target_wwns': ['500a0981891b8dc5', '500a0981991b8dc5'],
          'target_luns': [1, 2]},
         (('500a0981891b8dc5', 1), ('500a0981991b8dc5', 2))),
    )
    @ddt.unpack
    def test_targets(self, props, expected):
        original = copy.deepcopy(props)

        conn_props = fc_conn_props.FCConnProps(props)

        self.assertEqual(expected, conn_props.targets)
        self.assertEqual(max(len(conn_props.wwns), len(conn_props.luns)),
                         len(conn_props.targets))
        # Source dictionary is not modified
        self.assertEqual(original, props)

    @ddt.data(
        # No wwns
        {'target_lun': 1},
        {'target_wwn': [], 'target_lun': 1},
        # More luns than wwns
        {'target_wwns': ['500a0981891b8dc5'], 'target_luns': [1, 2]},
        # Mismatched lengths
        {'target_wwns': ['500a0981891b8dc5', '500a0981991b8dc5',
                         '500a0981a91b8dc5'],
         'target_luns': [1, 2]},
    )
    def test_invalid_pairing(self, props):
        self.assertRaises(exception.InvalidConnectionProperties,
                          fc_conn_props.FCConnProps, props)

    def test_invalid_lun(self):
        self.assertRaises(exception.InvalidLunId,
                          fc_conn_props.FCConnProps,
                          {'target_wwn': '500a0981891b8dc5',
                           'target_lun': 'abc'})

    @ddt.data('500a0981891b8dc5" /etc/shadow; echo "',
              '500a0981891b8dc5*',
              '0x500a0981891b8dc5',
              '50:0a:09:81:89:1b:8d:c5',
              '500a0981891b8dc5\n',
              '')
    def test_invalid_wwn(self, wwn):
        for props in ({'target_wwn': wwn},
                      {'target_wwns': ['500a0981891b8dc5', wwn],
                       'target_luns': [1, 2]}):
            exc = self.assertRaises(exception.InvalidTargetWWN,
                                    fc_conn_props.FCConnProps, props)
            self.assertIn(repr(wwn), str(exc))

    def test_defaults(self):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5'})
        self.assertIsNone(conn_props.initiator_target_map)
        self.assertIsNone(conn_props.initiator_target_lun_map)
        self.assertIsNone(conn_props.use_multipath)
        self.assertTrue(conn_props.enable_wildcard_scan)
        self.assertEqual('rw', conn_props.access_mode)
        self.assertFalse(conn_props.readonly)
        self.assertIsNone(conn_props.device_path)

    @ddt.data((True, True), ('false', False), (None, None))
    @ddt.unpack
    def test_use_multipath(self, value, expected):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5', 'use_multipath': value})
        self.assertEqual(expected, conn_props.use_multipath)

    def test_options(self):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5',
             'enable_wildcard_scan': False,
             'access_mode': 'ro',
             'device_path': '/dev/disk/by-id/dm-uuid-mpath-3600'})
        self.assertFalse(conn_props.enable_wildcard_scan)
        self.assertTrue(conn_props.readonly)
        self.assertEqual('/dev/disk/by-id/dm-uuid-mpath-3600',
                         conn_props.device_path)

    @mock.patch.object(fc_conn_props, 'LOG')
    def test_initiator_target_map(self, mock_log):
        props = {
            'target_wwns': ['514F0C50023F6C00', '514F0C50023F6C01'],
            'target_luns': [1, 2],
            'initiator_target_map': {
                '50014380186AF83C': ['514F0C50023F6C00'],
                '50014380186AF83E': ['514F0C50023F6C01',
                                     '514F0C50023F6C99']},
        }

        conn_props = fc_conn_props.FCConnProps(props)

        self.assertEqual(
            {'50014380186af83c': ('514f0c50023f6c00',),
             '50014380186af83e': ('514f0c50023f6c01', '514f0c50023f6c99')},
            dict(conn_props.initiator_target_map))
        self.assertEqual(
            {'50014380186af83c': (('514f0c50023f6c00', 1),),
             '50014380186af83e': (('514f0c50023f6c01', 2),)},
            dict(conn_props.initiator_target_lun_map))
        # The unknown target is dropped with a warning
        mock_log.warning.assert_called_once_with(mock.ANY,
                                                 '514f0c50023f6c99')

    def test_read_only(self):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5',
             'initiator_target_map': {'50014380186af83c':
                                      ['500a0981891b8dc5']}})
        self.assertRaises(AttributeError, setattr, conn_props, 'luns', (2,))
        self.assertRaises(TypeError, operator.setitem,
                          conn_props.initiator_target_map, 'x', ())
        self.assertEqual((0,), conn_props.luns)

    def test_repr(self):
        conn_props = fc_conn_props.FCConnProps(
            {'target_wwn': '500a0981891b8dc5', 'target_lun': 3})
        self.assertIn("('500a0981891b8dc5', 3)", repr(conn_props))

    def test_from_dictionary_parameter(self):
        class Connector(object):
            @fc_conn_props.FCConnProps.from_dictionary_parameter
            def method(self, connection_properties, other=None):
                return connection_properties, other

        conn_props, other = Connector().method(
            {'target_wwn': '500a0981891b8dc5'}, other=mock.sentinel.other)

        self.assertIsInstance(conn_props, fc_conn_props.FCConnProps)
        self.assertEqual(mock.sentinel.other, other)

        # Already converted properties are passed through
        result, _other = Connector().method(conn_props)
        self.assertIs(conn_props, result)
