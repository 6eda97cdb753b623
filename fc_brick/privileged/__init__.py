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

from oslo_privsep import capabilities as c
from oslo_privsep import priv_context


# Writing to sysfs scan/delete/rescan files and running systool, multipath and
# blockdev all need CAP_SYS_ADMIN.
capabilities = [c.CAP_SYS_ADMIN]

# Inside a virtualenv the library files are not owned by root, so the daemon
# also needs to bypass read permission checks to load our code.
if os.environ.get('VIRTUAL_ENV'):
    capabilities.append(c.CAP_DAC_READ_SEARCH)

default = priv_context.PrivContext(
    __name__,
    cfg_section='privsep_fcbrick',
    pypath=__name__ + '.default',
    capabilities=capabilities,
)
