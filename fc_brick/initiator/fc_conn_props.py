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

"""Fibre Channel connection properties."""

import functools
import re
import types
from typing import Callable, Dict, List, Optional, Tuple, Type  # noqa: H301

from oslo_log import log as logging
from oslo_utils import strutils

from fc_brick import exception

LOG = logging.getLogger(__name__)

Target = Tuple[str, int]

WWN_REGEX = re.compile(r'[0-9a-fA-F]+')


def parse_lun(lun) -> int:
    """Return the LUN as an int, accepting strings that are integers."""
    if isinstance(lun, bool):
        raise exception.InvalidLunId(lun=lun)
    if isinstance(lun, int):
        return lun
    if isinstance(lun, str):
        try:
            return int(lun)
        except ValueError:
            pass
    raise exception.InvalidLunId(lun=lun)


class FCConnProps(object):
    """Normalized, read-only view of the FC connection properties.

    The volume manager sends a loosely typed dictionary:

      {
       'target_wwn': <wwpn> | [<wwpn>, ...],
       'target_wwns': [<wwpn>, ...],         # wins over target_wwn
       'target_lun': <lun>,                  # defaults to 0
       'target_luns': [<lun>, ...],          # wins over target_lun
       'initiator_target_map': {<initiator wwpn>: [<target wwpn>, ...]},
       'use_multipath': <bool>,
       'enable_wildcard_scan': <bool>,       # defaults to True
       'access_mode': 'rw' | 'ro',
       'device_path': <path>,                # set by the consumer
      }

    Where a lun can be an int or a string with an int.

    WWPNs must be hexadecimal strings.  They are lower cased and combined
    with the LUNs into ``targets``, a tuple of (wwpn, lun) pairs.  Both lists
    must have the same length, or there must be several WWPNs and a single LUN
    shared by all of them.  When the initiator map is present
    ``initiator_target_lun_map`` maps each initiator to its (wwpn, lun)
    targets.

    The source dictionary is never modified and instances can't be modified
    after creation.
    """
    RO = 'ro'
    RW = 'rw'

    _frozen = False

    def __init__(self, conn_props: dict) -> None:
        wwns = self._get_wwns(conn_props)
        luns = self._get_luns(conn_props)

        if len(luns) == len(wwns) and wwns:
            # Single wwn + lun or multiple, potentially different, luns
            targets = list(zip(wwns, luns))
        elif len(luns) == 1 and len(wwns) > 1:
            # Multiple wwns sharing a single lun (old format)
            targets = [(wwn, luns[0]) for wwn in wwns]
        else:
            LOG.error("Unable to pair luns %(luns)s and wwns %(wwns)s.",
                      {'luns': luns, 'wwns': wwns})
            raise exception.InvalidConnectionProperties(luns=luns, wwns=wwns)

        self.wwns = tuple(wwns)
        self.luns = tuple(luns)
        self.targets: Tuple[Target, ...] = tuple(targets)

        itmap = conn_props.get('initiator_target_map')
        if itmap is not None:
            itmap = {k.lower(): tuple(port.lower() for port in v)
                     for k, v in itmap.items()}
            self.initiator_target_map = types.MappingProxyType(itmap)
            self.initiator_target_lun_map = types.MappingProxyType(
                self._get_initiator_target_lun_map(itmap, self.targets))
        else:
            self.initiator_target_map = None
            self.initiator_target_lun_map = None

        use_multipath = conn_props.get('use_multipath')
        if use_multipath is not None:
            use_multipath = strutils.bool_from_string(use_multipath)
        self.use_multipath: Optional[bool] = use_multipath
        self.enable_wildcard_scan = strutils.bool_from_string(
            conn_props.get('enable_wildcard_scan', True))
        self.access_mode = conn_props.get('access_mode') or self.RW
        self.device_path: Optional[str] = conn_props.get('device_path')

        self._frozen = True

    def __setattr__(self, name, value):
        if self._frozen:
            raise AttributeError('%s is read-only' % type(self).__name__)
        super(FCConnProps, self).__setattr__(name, value)

    def __repr__(self):
        return ('%s(targets=%r, initiator_target_lun_map=%r, '
                'use_multipath=%r, enable_wildcard_scan=%r, '
                'access_mode=%r)' % (
                    type(self).__name__, self.targets,
                    self.initiator_target_lun_map and
                    dict(self.initiator_target_lun_map),
                    self.use_multipath, self.enable_wildcard_scan,
                    self.access_mode))

    @property
    def readonly(self) -> bool:
        return self.access_mode == self.RO

    @staticmethod
    def _get_wwns(conn_props: dict) -> List[str]:
        target_wwn = conn_props.get('target_wwn')
        target_wwns = conn_props.get('target_wwns')
        if target_wwns:
            wwns = target_wwns
        elif isinstance(target_wwn, (list, tuple)):
            wwns = target_wwn
        elif isinstance(target_wwn, str):
            wwns = [target_wwn]
        else:
            wwns = []

        for wwn in wwns:
            # Target WWNs end up in shell commands and sysfs paths
            if not (isinstance(wwn, str) and WWN_REGEX.fullmatch(wwn)):
                raise exception.InvalidTargetWWN(wwn=wwn)
        return [wwn.lower() for wwn in wwns]

    @staticmethod
    def _get_luns(conn_props: dict) -> List[int]:
        target_luns = conn_props.get('target_luns')
        if target_luns:
            luns = target_luns
        else:
            luns = [conn_props.get('target_lun', 0)]
        return [parse_lun(lun) for lun in luns]

    @staticmethod
    def _get_initiator_target_lun_map(
            itmap: Dict[str, Tuple[str, ...]],
            targets: Tuple[Target, ...]) -> Dict[str, Tuple[Target, ...]]:
        wwpn_lun_map = dict(targets)
        itmaplun = {}
        for init_wwpn, target_wwpns in itmap.items():
            itmaplun[init_wwpn] = tuple(
                (target_wwpn, wwpn_lun_map[target_wwpn])
                for target_wwpn in target_wwpns
                if target_wwpn in wwpn_lun_map)

            # Drivers may return targets in the map that are not in
            # target_wwn or target_wwns.
            unknown = set(target_wwpns).difference(wwpn_lun_map)
            if unknown:
                LOG.warning('Driver returned unknown targets in the '
                            'initiator mapping %s', ', '.join(sorted(unknown)))
        return itmaplun

    @classmethod
    def from_dictionary_parameter(cls: Type['FCConnProps'],
                                  func: Callable) -> Callable:
        """Decorator to convert connection properties dictionary.

        Instances of the class are passed through as they are.
        """
        @functools.wraps(func)
        def wrapper(self, connection_properties, *args, **kwargs):
            if not isinstance(connection_properties, cls):
                connection_properties = cls(connection_properties)
            return func(self, connection_properties, *args, **kwargs)
        return wrapper
