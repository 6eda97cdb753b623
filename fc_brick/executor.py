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

"""Exec hook shared by every class that runs host commands.

Library users that need their own execute wrapper or root helper can inject
them here, and the unit tests use the same hook to capture commands.
"""

from oslo_concurrency import processutils as putils
from oslo_utils import encodeutils

from fc_brick.privileged import rootwrap as priv_rootwrap

_ERROR_TEXT_FIELDS = ('stdout', 'stderr', 'cmd', 'description')


class Executor(object):
    def __init__(self, root_helper, execute=None, *args, **kwargs):
        self.set_execute(execute or priv_rootwrap.execute)
        self.set_root_helper(root_helper)

    @staticmethod
    def safe_decode(string):
        """Text version of command output, undecodable bytes are dropped."""
        if not string:
            return string
        return encodeutils.safe_decode(string, errors='ignore')

    @classmethod
    def make_putils_error_safe(cls, exc):
        for name in _ERROR_TEXT_FIELDS:
            value = getattr(exc, name, None)
            if value:
                setattr(exc, name, cls.safe_decode(value))

    def _execute(self, *args, **kwargs):
        try:
            result = self.__execute(*args, **kwargs)
        except putils.ProcessExecutionError as exc:
            self.make_putils_error_safe(exc)
            raise

        if not result:
            return result
        stdout, stderr = result[0], result[1]
        return self.safe_decode(stdout), self.safe_decode(stderr)

    def _root_execute(self, *cmd, **kwargs):
        """Run a host command as root using our root helper."""
        kwargs.update(run_as_root=True, root_helper=self._root_helper)
        return self._execute(*cmd, **kwargs)

    def set_execute(self, execute):
        self.__execute = execute

    def set_root_helper(self, helper):
        self._root_helper = helper
