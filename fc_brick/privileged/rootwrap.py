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

"""Host command execution, optionally as root through privsep.

`execute_root()` (or `execute(run_as_root=True)`) runs any command as the
privileged user.  Every tool fc-brick drives (systool, multipath, multipathd,
blockdev, sg_scan, scsi_id, tee into sysfs) goes through `custom_execute`,
which adds a hard deadline: a stuck process is killed with a signal instead
of being waited on forever.
"""

import signal
import threading
import time

from oslo_concurrency import processutils as putils
from oslo_log import log as logging
from oslo_utils import strutils

from fc_brick import exception
from fc_brick import privileged


LOG = logging.getLogger(__name__)


class _TimedRun(object):
    """Per call state shared by the processutils callbacks."""

    def __init__(self, cmd, timeout, sig, interval, backoff_rate,
                 on_execute=None, on_completion=None):
        self.cmd = strutils.mask_password(' '.join(cmd))
        self.timeout = timeout
        self.sig = sig
        self.interval = interval
        self.backoff_rate = backoff_rate
        self.user_on_execute = on_execute
        self.user_on_completion = on_completion
        self.attempt = 0
        self.timer = None
        # Process killed by the timer in the current attempt
        self.killed = None

    def _kill(self, proc):
        LOG.warning('Killing %(cmd)s with signal %(signal)s after %(time)ss.',
                    {'cmd': self.cmd, 'signal': self.sig,
                     'time': self.timeout})
        self.killed = proc
        proc.send_signal(self.sig)

    def on_execute(self, proc):
        if self.user_on_execute:
            self.user_on_execute(proc)

        if self.attempt and self.interval:
            delay = max(0, self.interval * self.backoff_rate ** self.attempt)
            LOG.debug('Sleeping for %s seconds', delay)
            time.sleep(delay)
        self.attempt += 1

        if self.timeout:
            self.killed = None
            self.timer = threading.Timer(self.timeout, self._kill, (proc,))
            self.timer.start()

    def on_completion(self, proc):
        if self.timer:
            self.timer.cancel()
        if self.user_on_completion:
            self.user_on_completion(proc)

    def timeout_message(self):
        return ('Time out on proc %(pid)s after waiting %(time)s seconds '
                'when running %(cmd)s' %
                {'pid': self.killed.pid, 'time': self.timeout,
                 'cmd': self.cmd})


def custom_execute(*cmd, **kwargs):
    """processutils.execute with a deadline and controlled retry spacing.

    Retries wait ``interval * backoff_rate ** attempt`` seconds instead of
    the random delay of processutils, so ``backoff_rate=1`` means a fixed
    spacing.  Passing ``delay_on_retry`` explicitly keeps the processutils
    delay.

    A non-zero ``timeout`` arms a timer on every attempt that sends
    ``signal`` (SIGKILL by default) to the process.  When the last attempt
    was killed this way ``ExecutionTimeout`` is raised, or with
    ``raise_timeout=False`` the ``('', message)`` pair is returned.
    ``raise_timeout`` defaults to the value of ``check_exit_code``.
    """
    if 'delay_on_retry' in kwargs:
        interval, backoff_rate = None, None
    else:
        kwargs['delay_on_retry'] = False
        interval = kwargs.pop('interval', 1)
        backoff_rate = kwargs.pop('backoff_rate', 2)

    run = _TimedRun(cmd,
                    timeout=kwargs.pop('timeout', None),
                    sig=kwargs.pop('signal', signal.SIGKILL),
                    interval=interval,
                    backoff_rate=backoff_rate,
                    on_execute=kwargs.pop('on_execute', None),
                    on_completion=kwargs.pop('on_completion', None))
    raise_timeout = kwargs.pop('raise_timeout',
                               kwargs.get('check_exit_code', True))

    try:
        return putils.execute(*cmd, on_execute=run.on_execute,
                              on_completion=run.on_completion, **kwargs)
    except putils.ProcessExecutionError:
        if not run.killed:
            raise
        msg = run.timeout_message()
        LOG.debug(msg)
        if raise_timeout:
            raise exception.ExecutionTimeout(stdout='', stderr=msg,
                                             cmd=run.cmd)
        return '', msg


def execute(*cmd, **kwargs):
    """Run a command, as root through privsep when run_as_root is set.

    The root_helper argument is accepted and ignored since privsep does the
    escalation.  Errors are always ProcessExecutionError.
    """
    kwargs.pop('root_helper', None)
    if kwargs.pop('run_as_root', False):
        runner = execute_root
    else:
        runner = custom_execute
    try:
        return runner(*cmd, **kwargs)
    except OSError as exc:
        # Missing binaries surface as OSError
        raise putils.ProcessExecutionError(
            cmd=strutils.mask_password(' '.join(cmd)), description=str(exc))


@privileged.default.entrypoint
def execute_root(*cmd, **kwargs):
    return custom_execute(*cmd, shell=False, run_as_root=False, **kwargs)
