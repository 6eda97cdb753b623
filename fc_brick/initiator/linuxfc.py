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

"""Fibre Channel HBA discovery and SCSI host rescans on Linux."""

import errno
import os
from typing import Dict, List, Optional, Set, Tuple  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_log import log as logging

from fc_brick import initiator
from fc_brick.initiator import linuxscsi

LOG = logging.getLogger(__name__)

# nova.cmd.rootwrap.RC_NOEXECFOUND
RC_NOEXECFOUND = 96


class HBA(object):
    """A Fibre Channel host port as reported by systool.

    port_name and node_name are the WWPN and WWNN without the 0x prefix,
    host_device is the SCSI host (ie: host6) and device_path its sysfs device
    path.  Any other attribute reported by systool is kept in extras.
    """
    __slots__ = ('port_name', 'node_name', 'host_device', 'device_path',
                 'port_state', 'extras')

    def __init__(self, port_name: str, node_name: str,
                 host_device: Optional[str], device_path: Optional[str],
                 port_state: Optional[str] = None,
                 extras: Optional[Dict[str, str]] = None) -> None:
        self.port_name = port_name
        self.node_name = node_name
        self.host_device = host_device
        self.device_path = device_path
        self.port_state = port_state
        self.extras = extras or {}

    @classmethod
    def from_systool(cls, record: Dict[str, str]) -> 'HBA':
        known = ('port_name', 'node_name', 'ClassDevice', 'ClassDevicepath',
                 'port_state')
        return cls(port_name=record['port_name'].replace('0x', ''),
                   node_name=record['node_name'].replace('0x', ''),
                   host_device=record.get('ClassDevice'),
                   device_path=record.get('ClassDevicepath'),
                   port_state=record.get('port_state'),
                   extras={k: v for k, v in record.items() if k not in known})

    @property
    def host_number(self) -> str:
        """Number of the SCSI host, ie: 6 for host6."""
        host_device = self.host_device or ''
        if host_device.startswith('host'):
            return host_device[4:]
        return host_device

    def __eq__(self, other):
        if not isinstance(other, HBA):
            return NotImplemented
        return all(getattr(self, attr) == getattr(other, attr)
                   for attr in self.__slots__)

    def __repr__(self):
        return ('HBA(port_name=%r, node_name=%r, host_device=%r, '
                'device_path=%r, port_state=%r)' %
                (self.port_name, self.node_name, self.host_device,
                 self.device_path, self.port_state))


class LinuxFibreChannel(linuxscsi.LinuxSCSI):

    def has_fc_support(self) -> bool:
        return os.path.isdir(initiator.FC_HOST_SYSFS_PATH)

    def _get_hba_channel_scsi_target_lun(
            self, hba: HBA, conn_props) -> Tuple[List[list], Set[int]]:
        """Channel and SCSI target ids under which hba sees the targets.

        Only the targets mapped to the HBA port are looked up when the
        properties carry an initiator target map, all of them otherwise.

        :returns: ([channel, target, lun] entries for the target ports found,
                  set of the LUNs whose target port lookup failed)
        """
        targets = conn_props.targets
        if conn_props.initiator_target_lun_map is not None:
            targets = conn_props.initiator_target_lun_map.get(hba.port_name,
                                                              targets)

        path = '%s/target%s:' % (initiator.FC_TRANSPORT_SYSFS_PATH,
                                 hba.host_number)
        ctls = []
        luns_not_found = set()
        for wwpn, lun in targets:
            # The shell expands the target glob
            cmd = 'grep -Gil "%s" %s*/port_name' % (wwpn, path)
            try:
                out, _err = self._execute(cmd, shell=True)
            except putils.ProcessExecutionError as exc:
                LOG.debug('No target port %(wwpn)s under %(path)s*: '
                          '%(reason)s',
                          {'wwpn': wwpn, 'path': path, 'reason': exc})
                luns_not_found.add(lun)
                continue
            # /sys/class/fc_transport/target6:0:1/port_name -> ['0', '1']
            for line in out.split('\n'):
                if line.startswith(path):
                    channel_target = line.split('/')[4].split(':')[1:]
                    ctls.append(channel_target + [lun])
        return ctls, luns_not_found

    def rescan_hosts(self, hbas: List[HBA], conn_props) -> None:
        """Ask the SCSI layer to scan the HBAs for the volume LUNs.

        HBAs that see the target ports get a scan restricted to their
        channel, target and LUN.  When no HBA sees them, every HBA gets a
        wildcard ``- - <lun>`` scan, unless enable_wildcard_scan is False.
        Arrays whose ports are not listed in sysfs need the wildcard scan,
        but so does any array if all its paths were down at boot, and a
        wildcard scan may then attach unrelated volumes.
        """
        LOG.debug('Rescanning HBAs %(hbas)s with connection properties '
                  '%(conn_props)s', {'hbas': hbas, 'conn_props': conn_props})
        mapped_ports = conn_props.initiator_target_lun_map
        if mapped_ports:
            hbas = [hba for hba in hbas if hba.port_name in mapped_ports]
            LOG.debug('HBAs left after applying the initiator target map: '
                      '%s', hbas)

        wildcard_allowed = conn_props.enable_wildcard_scan
        narrow = []
        wildcard = []
        for hba in hbas:
            ctls, luns_not_found = self._get_hba_channel_scsi_target_lun(
                hba, conn_props)
            if ctls:
                narrow.append((hba, ctls))
            elif not wildcard_allowed:
                LOG.debug('Skipping HBA %s, it is not connected to the '
                          'target ports', hba.node_name)
            elif not narrow:
                wildcard.append((hba, [('-', '-', lun)
                                       for lun in luns_not_found]))

        for hba, ctls in narrow or wildcard:
            scan_path = '%s/%s/scan' % (initiator.SCSI_HOST_SYSFS_PATH,
                                        hba.host_device)
            for channel, target, lun in ctls:
                LOG.debug('Scanning %(host)s (wwnn: %(wwnn)s, c: '
                          '%(channel)s, t: %(target)s, l: %(lun)s)',
                          {'host': hba.host_device, 'wwnn': hba.node_name,
                           'channel': channel, 'target': target, 'lun': lun})
                self.echo_scsi_command(scan_path,
                                       '%s %s %s' % (channel, target, lun))

    @staticmethod
    def _parse_systool(out: str) -> List[Dict[str, str]]:
        """Turn ``systool -c fc_host -v`` output into one dict per port.

        Ports are blocks of ``key = "value"`` lines ended by two blank lines.
        Spaces are removed from keys and quotes from values.
        """
        # Skip the 'Class = "fc_host"' header and the blank line after it
        hbas = []
        current: Dict[str, str] = {}
        previous = None
        for line in out.split('\n')[2:]:
            line = line.strip()
            if line == '' and previous == '':
                if current:
                    hbas.append(current)
                    current = {}
            else:
                key, sep, value = line.partition('=')
                if sep:
                    current[key.strip().replace(' ', '')] = (
                        value.strip().replace('"', ''))
            previous = line

        if current:
            hbas.append(current)
        return hbas

    def get_fc_hbas(self) -> List[Dict[str, str]]:
        """Raw systool records of the FC host ports, [] if there are none."""
        if not self.has_fc_support():
            LOG.debug("No Fibre Channel support detected on system.")
            return []

        try:
            out, _err = self._root_execute('systool', '-c', 'fc_host', '-v')
        except putils.ProcessExecutionError as exc:
            # rootwrap reports a missing binary with its own exit code
            if exc.exit_code == RC_NOEXECFOUND:
                LOG.warning("systool is not installed")
            else:
                LOG.warning("systool failed, exit code %(code)s: %(err)s",
                            {'code': exc.exit_code,
                             'err': exc.stderr or exc.description})
            return []
        except OSError as exc:
            if exc.errno != errno.ENOENT:
                raise
            LOG.warning("systool is not installed")
            return []

        return self._parse_systool(out) if out else []

    def get_fc_hbas_info(self) -> List[HBA]:
        return [HBA.from_systool(hba) for hba in self.get_fc_hbas()]

    def get_fc_wwpns(self) -> List[str]:
        """WWPNs of the online ports."""
        return [hba.port_name for hba in self.get_fc_hbas_info()
                if hba.port_state == 'Online']

    def get_fc_wwnns(self) -> List[str]:
        """WWNNs of the online ports."""
        return [hba.node_name for hba in self.get_fc_hbas_info()
                if hba.port_state == 'Online']
