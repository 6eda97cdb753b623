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
"""fc-brick's Initiator module.

The initiator module contains the capabilities for discovering the Fibre
Channel initiator information as well as discovering and removing volumes
from a host.
"""

import re


FC_HOST_SYSFS_PATH = '/sys/class/fc_host'
FC_TRANSPORT_SYSFS_PATH = '/sys/class/fc_transport'
SCSI_HOST_SYSFS_PATH = '/sys/class/scsi_host'
BY_PATH_DIR = '/dev/disk/by-path'

MULTIPATH_ERROR_REGEX = re.compile(r"\w{3} \d+ \d\d:\d\d:\d\d \|.*$")
MULTIPATH_PATH_CHECK_REGEX = re.compile(r"\s+\d+:\d+:\d+:\d+\s+")
MULTIPATH_WWID_REGEX = re.compile(r"\((?P<wwid>.+)\)")
MULTIPATH_DEVICE_ACTIONS = ['unchanged:', 'reject:', 'reload:',
                            'switchpg:', 'rename:', 'create:',
                            'resize:']

# Some platforms (ie: arm64 boards) put a platform device before the PCI
# address: platform-40000000.pcie-controller-pci-0000:01:00.1-fc-0x...-lun-0
BY_PATH_PREFIX_REGEX = re.compile(
    r"(.*)pci-[a-z0-9]{4}:[a-z0-9]{2}:[a-z0-9]{2}.[a-z0-9]+"
    r"-fc-0x[a-z0-9]{16}-lun-[a-z0-9]+")

PLATFORM_ALL = 'ALL'
OS_TYPE_ALL = 'ALL'
OS_TYPE_LINUX = 'LINUX'

FIBRE_CHANNEL = "FIBRE_CHANNEL"
