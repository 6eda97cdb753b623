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

"""SCSI device and multipath helpers for Linux hosts."""

import os
import re
import time
from typing import Dict, List, Optional  # noqa: H301

from oslo_concurrency import processutils as putils
from oslo_config import cfg
from oslo_log import log as logging
from oslo_utils import excutils

from fc_brick import exception
from fc_brick import executor
from fc_brick import initiator
from fc_brick.initiator import fc_conn_props
from fc_brick.privileged import rootwrap as priv_rootwrap
from fc_brick import utils

LOG = logging.getLogger(__name__)
CONF = cfg.CONF

WAIT_FOR_PATH_ATTEMPTS = 3
WAIT_FOR_PATH_INTERVAL = 1
SG_SCAN_HOST_REGEX = re.compile(r"scsi(?P<host>\d+)")
SYSFS_SD_DRIVER = '/sys/bus/scsi/drivers/sd'
MULTIPATH_ID_PATHS = ('/dev/disk/by-id/dm-uuid-mpath-%s', '/dev/mapper/%s')


class LinuxSCSI(executor.Executor):

    def echo_scsi_command(self, path, content) -> None:
        """Write content into a sysfs file as root."""
        self._root_execute('tee', '-a', path, process_input=content)

    def get_name_from_path(self, path) -> Optional[str]:
        """Kernel device (/dev/sdX) a by-path link points to."""
        name = os.path.realpath(path)
        return name if name.startswith('/dev/') else None

    def remove_scsi_device(self, device: str, flush: bool = True) -> None:
        """Ask the kernel to drop a /dev/sdX device.

        Nothing is done when sysfs has no delete file for it, the device is
        gone already.
        """
        delete_path = ('/sys/block/%s/device/delete' %
                       device.replace('/dev/', ''))
        if not os.path.exists(delete_path):
            return

        if flush:
            self.flush_device_io(device)
        LOG.debug("Remove SCSI device %(device)s with %(path)s",
                  {'device': device, 'path': delete_path})
        self.echo_scsi_command(delete_path, "1")

    def get_device_info(self, device: str) -> Dict[str, Optional[str]]:
        """SCSI address of a /dev/sdX device as reported by sg_scan.

        ``/dev/sdb: scsi2 channel=0 id=1 lun=3`` gives host 2, channel 0,
        id 1 and lun 3.  Missing fields are None.
        """
        dev_info = dict.fromkeys(('host', 'channel', 'id', 'lun'))
        dev_info['device'] = device

        out, _err = self._root_execute('sg_scan', device)
        LOG.debug('sg_scan %(device)s output: %(out)s',
                  {'device': device, 'out': out})
        fields = (out or '').strip().replace(device + ': ', '', 1).split()
        for field in fields:
            key, sep, value = field.partition('=')
            if sep:
                if key in dev_info and key != 'device':
                    dev_info[key] = value
                continue
            match = SG_SCAN_HOST_REGEX.search(field)
            if match:
                dev_info['host'] = match.group('host')

        LOG.debug('SCSI address of %(device)s: %(info)s',
                  {'device': device, 'info': dev_info})
        return dev_info

    def get_scsi_wwn(self, path: str) -> str:
        """WWN of a device taken from its VPD page 0x83."""
        out, _err = self._root_execute('/lib/udev/scsi_id', '--page', '0x83',
                                       '--whitelisted', path)
        return out.strip()

    @staticmethod
    def is_multipath_running(enforce_multipath, root_helper,
                             execute=None) -> bool:
        """Whether multipathd answers, raising if it must and does not."""
        execute = execute or priv_rootwrap.execute
        cmd = ('multipathd', 'show', 'status')
        try:
            out, _err = execute(*cmd, run_as_root=True,
                                root_helper=root_helper)
            # Older multipathd exit with 0 when the daemon is down
            if out and out.startswith('error receiving packet'):
                raise putils.ProcessExecutionError('', out, 1, cmd, None)
        except putils.ProcessExecutionError as err:
            if not enforce_multipath:
                return False
            LOG.error('multipathd is not running: exit code %(err)s',
                      {'err': err.exit_code})
            raise
        return True

    @staticmethod
    def requires_flush(path: str, path_used: Optional[str],
                       was_multipath: bool) -> bool:
        """Whether a single path device must be flushed before removal.

        Only the device that received the I/O has buffered data.  Nothing
        needs flushing when the multipath device was used, when I/O went
        through another path, or when the attach failed and no path was
        used at all.
        """
        if not path_used or was_multipath:
            return False

        real_path = os.path.realpath(path)
        real_used = os.path.realpath(path_used)
        if real_used == real_path:
            return True

        # An encrypted volume link points to its dm-crypt device, not /dev/sdX
        return os.path.dirname(real_used) != '/dev'

    @staticmethod
    def _flush_retry_args() -> dict:
        return {'attempts': CONF.fc_brick.flush_attempts,
                'interval': CONF.fc_brick.flush_interval,
                'backoff_rate': 1,
                'timeout': CONF.fc_brick.flush_timeout}

    def flush_device_io(self, device: str) -> None:
        """Flush the buffers of a block device, if it still exists.

        Each attempt is killed after flush_timeout seconds, blockdev can hang
        on a path that lost its target.
        """
        if not os.path.exists(device):
            return
        LOG.debug("Flushing IO for device %s", device)
        try:
            self._root_execute('blockdev', '--flushbufs', device,
                               **self._flush_retry_args())
        except putils.ProcessExecutionError as exc:
            LOG.warning("Could not flush buffers of %(device)s before "
                        "removing it, exit code %(code)s",
                        {'device': device, 'code': exc.exit_code})
            raise

    def flush_multipath_device(self, device_map_name: str) -> None:
        LOG.debug("Flush multipath device %s", device_map_name)
        self._root_execute('multipath', '-f', device_map_name,
                           **self._flush_retry_args())

    def wait_for_path(self, volume_path: str) -> bool:
        """Poll for volume_path to exist, returns whether it appeared."""
        def _exists(attempt):
            LOG.debug("Looking for %(path)s, try %(attempt)s",
                      {'path': volume_path, 'attempt': attempt})
            return os.path.exists(volume_path)

        found = utils.poll(WAIT_FOR_PATH_ATTEMPTS, WAIT_FOR_PATH_INTERVAL,
                           _exists)
        LOG.debug("%(path)s %(state)s",
                  {'path': volume_path,
                   'state': 'has shown up' if found else 'does not exist'})
        return found

    @utils.retry(exception.BlockDeviceReadOnly, retries=5, backoff_rate=1)
    def wait_for_rw(self, wwn: str, device_path: str) -> None:
        """Retry until no block device named after wwn is read-only.

        Multipath maps and their legs can be exported read-only for a while
        after login.  Each read-only hit asks multipath to reload the maps.
        A failing lsblk counts as a read-only hit, so it is retried too.
        """
        try:
            out, _err = self._execute('lsblk', '-o', 'NAME,RO', '-l', '-n')
        except putils.ProcessExecutionError as exc:
            LOG.debug("Could not list block devices: %s", exc)
            raise exception.BlockDeviceReadOnly(device=device_path) from exc
        LOG.debug("lsblk output: %s", out)
        # Rows are "sdd  0" or, for multipath maps, "<wwn> (dm-1)  1"
        for row in out.splitlines():
            columns = row.split()
            if not columns:
                continue
            if wwn in columns[0] and columns[-1] == '1':
                LOG.debug("Block device %s is read-only", device_path)
                try:
                    self._root_execute('multipath', '-r',
                                       check_exit_code=[0, 1, 21])
                except putils.ProcessExecutionError as exc:
                    LOG.warning("Failed to reload multipath maps: %s",
                                exc.stderr or exc)
                raise exception.BlockDeviceReadOnly(device=device_path)

        LOG.debug("Block device %s is read-write", device_path)

    def find_multipath_device_path(self, wwn: str) -> Optional[str]:
        """Multipath device node for a WWN.

        The by-id ``dm-uuid-mpath-<wwn>`` link exists with or without
        user_friendly_names.  ``/dev/mapper/<wwn>`` only exists without
        them.
        """
        LOG.info("Looking for the multipath device of WWN %(wwn)s",
                 {'wwn': wwn})
        for template in MULTIPATH_ID_PATHS:
            path = template % wwn
            if self.wait_for_path(path):
                return path

        LOG.warning("No multipath device found for WWN %(wwn)s",
                    {'wwn': wwn})
        return None

    def find_multipath_device(self, device: str) -> Optional[dict]:
        """Parse ``multipath -l <device>`` into the map and its legs.

        Returns None when multipath does not know the device or its
        /dev/mapper node is missing.
        """
        try:
            out, _err = self._root_execute('multipath', '-l', device)
        except putils.ProcessExecutionError as exc:
            LOG.warning("multipath -l %(device)s failed with exit code "
                        "%(code)s: %(err)s",
                        {'device': device, 'code': exc.exit_code,
                         'err': exc.stderr})
            raise exception.CommandExecutionFailed(
                cmd='multipath -l %s' % device)

        lines = [line for line in (out or '').strip().split("\n")
                 if line and not initiator.MULTIPATH_ERROR_REGEX.match(line)]
        if not lines:
            return None

        header = lines[0].split()
        # "create: mpatha (3600...) dm-0 ..." on a freshly built map
        mdev_name = (header[1] if header[0] in
                     initiator.MULTIPATH_DEVICE_ACTIONS else header[0])
        mdev = '/dev/mapper/%s' % mdev_name
        if not os.path.exists(mdev):
            LOG.warning("Multipath device %s does not exist", mdev)
            return None

        wwid_match = initiator.MULTIPATH_WWID_REGEX.search(lines[0])
        mdev_id = wwid_match.group('wwid') if wwid_match else mdev_name
        LOG.debug("Found multipath device %(mdev)s", {'mdev': mdev})

        devices = []
        for line in lines[1:]:
            if ('policy' in line or
                    not initiator.MULTIPATH_PATH_CHECK_REGEX.search(line)):
                continue
            hctl, dev_name = line.lstrip(' |-`').split()[:2]
            host, channel, target, lun = hctl.split(':')
            devices.append({'device': '/dev/%s' % dev_name, 'host': host,
                            'channel': channel, 'id': target, 'lun': lun})

        return {'device': mdev, 'id': mdev_id, 'name': mdev_name,
                'devices': devices}

    def get_device_size(self, device: str) -> Optional[float]:
        """Size of a block device in bytes, None if unreadable."""
        out, _err = self._root_execute('blockdev', '--getsize64', device)
        size = utils.to_float(out)
        if size is None:
            LOG.warning("Size of %(device)s is not numeric: %(out)s",
                        {'device': device, 'out': out})
        return size

    def multipath_reconfigure(self) -> str:
        """Make multipathd reload its configuration and maps.

        After many attaches and detaches multipathd may lose track of its
        maps and every resize fails until it reloads them.
        """
        out, _err = self._root_execute('multipathd', 'reconfigure')
        return out

    def _multipath_resize_map(self, wwn: str) -> str:
        cmd = ('multipathd', 'resize', 'map', wwn)
        out, err = self._root_execute(
            *cmd, timeout=CONF.fc_brick.multipathd_resize_timeout)
        if 'fail' in out or 'timeout' in out:
            raise putils.ProcessExecutionError(
                stdout=out, stderr=err, exit_code=1, cmd=' '.join(cmd))
        return out

    def multipath_resize_map(self, wwn: str) -> str:
        """Make multipathd pick up the new size of a map.

        Since multipath-tools 0.6.1 a reconfigure runs in the background and
        resize answers "timeout" until it finishes, so that answer is
        retried every second for up to multipathd_resize_timeout seconds.
        Other failures raise ProcessExecutionError.
        """
        resize_timeout = CONF.fc_brick.multipathd_resize_timeout
        started = time.time()
        while True:
            try:
                return self._multipath_resize_map(wwn)
            except putils.ProcessExecutionError as err:
                with excutils.save_and_reraise_exception() as ctx:
                    elapsed = time.time() - started
                    busy = 'timeout' in (err.stdout or '')
                    if busy and elapsed < resize_timeout:
                        LOG.debug("multipathd is still reconfiguring after "
                                  "%(elapsed)ss of %(timeout)ss, retrying "
                                  "the resize of %(wwn)s",
                                  {'elapsed': elapsed,
                                   'timeout': resize_timeout, 'wwn': wwn})
                        ctx.reraise = False
                        time.sleep(1)

    def extend_volume(self, volume_paths: List[str],
                      use_multipath: bool = False) -> Optional[float]:
        """Rescan the paths of a volume so the kernel sees its new size.

        A path that cannot be refreshed is logged and skipped.  With
        use_multipath the map is resized too and its size is returned.

        :returns: last size read in bytes, None if none could be read
        """
        LOG.debug("Extending volume with paths %s", volume_paths)

        new_size = None
        for volume_path in volume_paths:
            try:
                new_size = self._rescan_device_size(volume_path)
            except putils.ProcessExecutionError as exc:
                LOG.warning("Failed to refresh size of %(path)s, skipping "
                            "it: %(err)s", {'path': volume_path,
                                            'err': exc.stderr or exc})

        scsi_wwn = self.get_scsi_wwn(volume_paths[0])
        if not use_multipath:
            return new_size

        mpath_device = self.find_multipath_device_path(scsi_wwn)
        if mpath_device:
            self.multipath_reconfigure()
            LOG.info("Multipath %(device)s size before resize: %(size)s",
                     {'device': mpath_device,
                      'size': self.get_device_size(mpath_device)})

            self.multipath_resize_map(scsi_wwn)

            new_size = self.get_device_size(mpath_device)
            LOG.info("Multipath %(device)s size after resize: %(size)s",
                     {'device': mpath_device, 'size': new_size})
        return new_size

    def _rescan_device_size(self, volume_path: str) -> Optional[float]:
        address = self.get_device_info(volume_path)
        rescan_path = ('%(root)s/%(host)s:%(channel)s:%(id)s:%(lun)s/rescan'
                       % dict(address, root=SYSFS_SD_DRIVER))

        LOG.debug("Size of %(path)s before rescan: %(size)s",
                  {'path': volume_path,
                   'size': self.get_device_size(volume_path)})
        self.echo_scsi_command(rescan_path, "1")
        new_size = self.get_device_size(volume_path)
        LOG.debug("Size of %(path)s after rescan: %(size)s",
                  {'path': volume_path, 'size': new_size})
        return new_size

    def process_lun_id(self, lun_ids):
        """Format one LUN or a list of them the way sysfs expects.

        LUNs from 256 on use the 64-bit flat space addressing format.
        """
        if isinstance(lun_ids, list):
            return [self._format_lun_id(lun) for lun in lun_ids]
        return self._format_lun_id(lun_ids)

    def _format_lun_id(self, lun_id):
        lun_id = fc_conn_props.parse_lun(lun_id)
        if lun_id < 256:
            return lun_id
        return '0x%04x%04x00000000' % (lun_id & 0xffff, lun_id >> 16 & 0xffff)
