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
from oslo_config import cfg


_opts = [
    cfg.IntOpt('device_scan_attempts',
               default=3,
               min=1,
               help='Number of times the Fibre Channel candidate paths are '
                    'polled for the volume device when connecting.  Between '
                    'attempts the HBAs are rescanned.  Default value is 3.'),
    cfg.IntOpt('device_scan_interval',
               default=5,
               min=0,
               help='Seconds to wait between two polls for the volume '
                    'device.  The first poll happens immediately.  Default '
                    'value is 5.'),
    cfg.IntOpt('flush_attempts',
               default=3,
               min=1,
               help='Number of attempts to flush the buffers of a device or '
                    'a multipath map before removing it.  Default value is '
                    '3.'),
    cfg.IntOpt('flush_interval',
               default=10,
               min=0,
               help='Seconds to wait between two flush attempts.  Default '
                    'value is 10.'),
    cfg.IntOpt('flush_timeout',
               default=180,
               min=1,
               help='Seconds a single flush attempt may run before the '
                    'process is killed.  Flushing can get stuck under high '
                    'connection error rates.  Default value is 180.'),
    cfg.IntOpt('multipathd_resize_timeout',
               default=120,
               min=1,
               help='Seconds to keep retrying ``multipathd resize map`` while '
                    'multipathd reports a timeout because a reconfigure is '
                    'still in progress.  Default value is 120.'),
]

cfg.CONF.register_opts(_opts, group='fc_brick')


def list_opts():
    """oslo.config.opts entrypoint for sample config generation."""
    return [('fc_brick', _opts)]


def set_defaults(conf=cfg.CONF, **overrides):
    """Set default values for the fc_brick options.

    Called from fc_brick setup so library users can change the defaults
    without shipping a configuration file, ie:
    ``set_defaults(device_scan_attempts=5)``.
    """
    for name, value in overrides.items():
        conf.set_default(name, value, 'fc_brick')
