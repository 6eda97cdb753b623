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
import re
from typing import List, Optional, Tuple  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging
from oslo_service import loopingcall

from fc_brick import exception
from fc_brick import initiator
from fc_brick.initiator.connectors import base
from fc_brick.initiator import fc_conn_props
from fc_brick.initiator import linuxfc
from fc_brick import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

# Single path by-path links have a pci-<id> segment, multipath links don't
SINGLE_PATH_LINK_REGEX = re.compile(r'[/-]pci-')

# (pci_id, '0x' + wwpn, lun)
CandidateDevice = Tuple[str, str, int]


class _DeviceDiscovery(object):
    """Wait for one of the candidate paths of a volume to show up.

    Each call is a tick of the looping call.  A tick polls the candidates
    and, when nothing was found and there are attempts left, rescans the
    HBAs so the next tick can find the device.  The first poll happens on
    the first tick and there is never a rescan after the last poll.
    """
    POLL = 'poll'
    RESCAN = 'rescan'
    FOUND = 'found'
    EXHAUSTED = 'exhausted'

    def __init__(self, connector, hbas, conn_props, host_devices, attempts):
        self._connector = connector
        self._hbas = hbas
        self._conn_props = conn_props
        self._host_devices = host_devices
        self._attempts = attempts
        self.state = self.POLL
        self.tries = 0
        self.rescans = 0
        self.host_device = None

    def _poll(self):
        self.tries += 1
        for device in self._host_devices:
            LOG.debug("Looking for Fibre Channel dev %(device)s",
                      {'device': device})
            if (os.path.exists(device) and
                    self._connector.check_valid_device(device)):
                self.host_device = device
                return self.FOUND

        if self.tries >= self._attempts:
            return self.EXHAUSTED
        return self.RESCAN

    def _rescan(self):
        LOG.info("Fibre Channel volume device not yet found. "
                 "Will rescan & retry.  Try number: %(tries)s.",
                 {'tries': self.tries})
        self._connector._linuxfc.rescan_hosts(self._hbas, self._conn_props)
        self.rescans += 1
        return self.POLL

    def __call__(self):
        self.state = self._poll()

        if self.state == self.FOUND:
            raise loopingcall.LoopingCallDone(self.host_device)

        if self.state == self.EXHAUSTED:
            LOG.error("Fibre Channel volume device not found.")
            raise exception.NoFibreChannelVolumeDeviceFound()

        self.state = self._rescan()


class FibreChannelConnector(base.BaseLinuxConnector):
    """Connector class to attach/detach Fibre Channel volumes."""

    def __init__(self, root_helper, execute=None, use_multipath=True,
                 device_scan_attempts=None, *args, **kwargs):
        self._linuxfc = linuxfc.LinuxFibreChannel(root_helper, execute)
        super(FibreChannelConnector, self).__init__(
            root_helper, execute=execute,
            device_scan_attempts=device_scan_attempts,
            *args, **kwargs)
        self.use_multipath = use_multipath

    def set_execute(self, execute):
        super(FibreChannelConnector, self).set_execute(execute)
        self._linuxscsi.set_execute(execute)
        self._linuxfc.set_execute(execute)

    @staticmethod
    def get_connector_properties(root_helper, *args, **kwargs):
        """WWPNs and WWNNs of the online HBAs, omitted when there are none."""
        fc = linuxfc.LinuxFibreChannel(root_helper,
                                       execute=kwargs.get('execute'))
        props = {'wwpns': fc.get_fc_wwpns(), 'wwnns': fc.get_fc_wwnns()}
        return {key: value for key, value in props.items() if value}

    def get_search_path(self):
        return initiator.BY_PATH_DIR

    def _use_multipath(self, conn_props) -> bool:
        if conn_props.use_multipath is not None:
            return conn_props.use_multipath
        return self.use_multipath

    def _get_possible_volume_paths(self, conn_props,
                                   hbas: List[linuxfc.HBA]) -> List[str]:
        possible_devs = self._get_possible_devices(hbas, conn_props.targets)
        return self._get_host_devices(possible_devs)

    @fc_conn_props.FCConnProps.from_dictionary_parameter
    def get_volume_paths(self, connection_properties):
        # Zoning decides which of the candidates really show up
        hbas = self._linuxfc.get_fc_hbas_info()
        candidates = self._get_possible_volume_paths(connection_properties,
                                                     hbas)
        return [path for path in candidates if os.path.exists(path)]

    @utils.trace
    @fc_conn_props.FCConnProps.from_dictionary_parameter
    def extend_volume(self, connection_properties):
        """Refresh the size the kernel has for an attached FC volume."""
        volume_paths = self.get_volume_paths(connection_properties)
        if not volume_paths:
            LOG.warning("No paths of volume %(props)s found on this host, "
                        "cannot extend it", {'props': connection_properties})
            raise exception.VolumePathsNotFound()

        return self._linuxscsi.extend_volume(
            volume_paths,
            use_multipath=self._use_multipath(connection_properties))

    @utils.trace
    @fc_conn_props.FCConnProps.from_dictionary_parameter
    def connect_volume(self, connection_properties):
        """Wait for the volume to show up on the host and return its path.

        Rescans the HBAs between polls until one of the by-path candidates
        exists and can be read.  With multipath the map holding that path
        is returned instead, when there is one.

        :raises NoFibreChannelHostsFound: the host has no online HBA
        :raises NoFibreChannelVolumeDeviceFound: no path after all attempts
        """
        hbas = self._linuxfc.get_fc_hbas_info()
        if not hbas:
            LOG.warning("No Fibre Channel HBA found on this host.")
            raise exception.NoFibreChannelHostsFound()

        host_devices = self._get_possible_volume_paths(connection_properties,
                                                       hbas)

        # One path is enough, multipath assembles the others on its own
        attempts = (self.device_scan_attempts or
                    CONF.fc_brick.device_scan_attempts)
        discovery = _DeviceDiscovery(self, hbas, connection_properties,
                                     host_devices, attempts)
        timer = loopingcall.FixedIntervalLoopingCall(discovery)
        host_device = timer.start(
            interval=CONF.fc_brick.device_scan_interval).wait()

        LOG.debug("Found Fibre Channel volume %(name)s after %(rescans)s "
                  "rescans", {'name': os.path.realpath(host_device),
                              'rescans': discovery.rescans})

        device_wwn = self._linuxscsi.get_scsi_wwn(host_device)
        LOG.debug("Device WWN = '%(wwn)s'", {'wwn': device_wwn})
        device_info = {'type': 'block', 'scsi_wwn': device_wwn,
                       'path': host_device}

        if self._use_multipath(connection_properties):
            # The link is passed on purpose, callers such as the encryptors
            # need a symlink when no multipath is found
            device_path, multipath_id = self._discover_mpath_device(
                device_wwn, connection_properties, host_device)
            device_info['path'] = device_path
            if multipath_id:
                device_info['multipath_id'] = multipath_id

        return device_info

    @staticmethod
    def _get_possible_host_path_prefix() -> Optional[str]:
        """Find the prefix by-path links have on this host.

        Some platforms, like arm64 servers, add a prefix before the pci id:
        /dev/disk/by-path/platform-40000000.pcie-controller-pci-0000:01:00.1-
        fc-0x2101001b32a08c84-lun-0
        """
        try:
            names = os.listdir(initiator.BY_PATH_DIR)
        except OSError as exc:
            LOG.debug("Cannot list %(dir)s: %(exc)s",
                      {'dir': initiator.BY_PATH_DIR, 'exc': exc})
            return None

        for name in names:
            match = initiator.BY_PATH_PREFIX_REGEX.match(name)
            if match:
                LOG.debug("Found by-path link %(name)s with prefix "
                          "%(prefix)r", {'name': name,
                                         'prefix': match.group(1)})
                return match.group(1)
        return None

    @staticmethod
    def _by_path_name(prefix, pci_num, target_wwn, lun_id):
        return "%s/%spci-%s-fc-%s-lun-%s" % (initiator.BY_PATH_DIR, prefix,
                                             pci_num, target_wwn, lun_id)

    def _get_host_devices(self,
                          possible_devs: List[CandidateDevice]) -> List[str]:
        """By-path names the candidate devices would have on this host.

        If the first name built without prefix does not exist the by-path
        directory is probed once for a platform prefix, which is then used
        for that name and the following ones.
        """
        host_devices = []
        prefix = ''
        probed = False
        for pci_num, target_wwn, lun in possible_devs:
            lun_id = self._linuxscsi.process_lun_id(lun)
            host_device = self._by_path_name(prefix, pci_num, target_wwn,
                                             lun_id)
            if not (prefix or probed or os.path.exists(host_device)):
                probed = True
                LOG.debug("%s does not exist, looking for a by-path prefix",
                          host_device)
                prefix = self._get_possible_host_path_prefix() or ''
                if prefix:
                    host_device = self._by_path_name(prefix, pci_num,
                                                     target_wwn, lun_id)
            host_devices.append(host_device)
        return host_devices

    def _get_possible_devices(self, hbas: List[linuxfc.HBA],
                              targets) -> List[CandidateDevice]:
        """Cross every HBA PCI address with every (wwn, lun) target.

        Zoning makes only some of the combinations real, the result is the
        search space for the volume paths.  HBAs without a PCI address are
        left out.
        """
        candidates = []
        for hba in hbas:
            pci_num = self._get_pci_num(hba)
            if pci_num is None:
                continue
            candidates.extend((pci_num, '0x%s' % wwn.lower(), lun)
                              for wwn, lun in targets)
        return candidates

    @utils.trace
    @fc_conn_props.FCConnProps.from_dictionary_parameter
    def disconnect_volume(self, connection_properties, device_info):
        """Flush and remove every SCSI device of the volume.

        When multipath is used the map is flushed first, once.

        :raises NoDevicesToRemove: none of the volume paths was resolved
        :raises DeviceRemovalFailed: the kernel refused to drop a device
        """
        devices = []
        use_multipath = self._use_multipath(connection_properties)
        mpath_path = None

        for path in self.get_volume_paths(connection_properties):
            real_path = self._linuxscsi.get_name_from_path(path)
            if (use_multipath and not mpath_path and
                    self.check_valid_device(path)):
                mpath_path = self._flush_multipath_of(path)

            if real_path is None:
                LOG.warning("Skipping %s, it doesn't resolve to a device",
                            path)
                continue
            try:
                devices.append(self._linuxscsi.get_device_info(real_path))
            except putils.ProcessExecutionError as exc:
                LOG.warning("Skipping %(path)s, failed to get its SCSI "
                            "address: %(err)s",
                            {'path': real_path, 'err': exc.stderr or exc})

        if not devices:
            LOG.error("No device to remove for %s", connection_properties)
            raise exception.NoDevicesToRemove(
                targets=list(connection_properties.targets))

        LOG.debug("Devices to remove: %s", devices)
        self._remove_devices(connection_properties, devices, device_info)

    def _flush_multipath_of(self, path) -> Optional[str]:
        """Flush the multipath map holding path and return the map path.

        None means the map is still unknown, other legs may find it.
        """
        try:
            wwn = self._linuxscsi.get_scsi_wwn(path)
        except putils.ProcessExecutionError as exc:
            LOG.warning("Cannot get the WWN of %(path)s to find its "
                        "multipath: %(err)s",
                        {'path': path, 'err': exc.stderr or exc})
            return None
        mpath_path = self._linuxscsi.find_multipath_device_path(wwn)
        if mpath_path:
            self._linuxscsi.flush_multipath_device(mpath_path)
        return mpath_path

    def _remove_devices(self, connection_properties, devices, device_info):
        path_used = utils.get_dev_path(connection_properties, device_info)
        # A multipath was used if the path is a link (deeper than /dev/x)
        # that is not a single path by-path link.  The link itself may be
        # gone already, so os.path.islink cannot tell.
        was_multipath = (path_used.count(os.sep) > 2 and
                         not SINGLE_PATH_LINK_REGEX.search(path_used))
        for device in devices:
            device_path = device['device']
            flush = self._linuxscsi.requires_flush(device_path, path_used,
                                                   was_multipath)
            try:
                self._linuxscsi.remove_scsi_device(device_path, flush=flush)
            except putils.ProcessExecutionError as exc:
                LOG.error("Failed to remove device %(device)s: %(err)s",
                          {'device': device_path, 'err': exc.stderr or exc})
                raise exception.DeviceRemovalFailed(
                    device=device_path,
                    reason=exc.stderr or exc.description) from exc

    @staticmethod
    def _get_pci_num(hba: linuxfc.HBA) -> Optional[str]:
        """PCI address of an HBA, the sysfs component before host or net.

        FC:   /sys/devices/pci0000:00/0000:00:03.0/0000:05:00.3/host2/...
        FCoE: /sys/devices/pci0000:20/0000:20:03.0/0000:21:00.2/net/ens2f2/...
        """
        if hba is None or not hba.device_path:
            return None
        parts = hba.device_path.split('/')
        for index, part in enumerate(parts):
            if part.startswith(('host', 'net')):
                return parts[index - 1]
        return None
