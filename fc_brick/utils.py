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
#
"""Utilities and helper functions."""

import functools
import inspect
import itertools
import logging as py_logging
import time
from typing import Callable, Optional, Tuple, Type, Union   # noqa: H301

from oslo_log import log as logging
from oslo_utils import strutils

from fc_brick.i18n import _


_time_sleep = time.sleep


def _sleep(secs: float) -> None:
    """Indirection so tests can stop tenacity and our loops from sleeping.

    tenacity grabs its sleep function at import time, so we replace
    time.sleep before importing it and tests patch _time_sleep instead.
    """
    _time_sleep(secs)


time.sleep = _sleep

import tenacity  # noqa


LOG = logging.getLogger(__name__)


def retry(retry_param: Union[Type[Exception], Tuple[Type[Exception], ...]],
          interval: float = 1,
          retries: int = 3,
          backoff_rate: float = 2) -> Callable:
    """Retry the decorated call while it raises one of retry_param.

    Sleeps ``interval * backoff_rate ** n`` between attempts, so a
    ``backoff_rate`` of 1 polls at a fixed interval.  The last exception is
    re-raised once ``retries`` attempts have been made.
    """
    if retries < 1:
        raise ValueError(_('Retries must be greater than or '
                         'equal to 1 (received: %s). ') % retries)

    def _decorator(f):

        @functools.wraps(f)
        def _wrapper(*args, **kwargs):
            r = tenacity.Retrying(
                before_sleep=tenacity.before_sleep_log(LOG, logging.DEBUG),
                after=tenacity.after_log(LOG, logging.DEBUG),
                stop=tenacity.stop_after_attempt(retries),
                reraise=True,
                retry=tenacity.retry_if_exception_type(retry_param),
                wait=tenacity.wait_exponential(
                    multiplier=interval, min=0, exp_base=backoff_rate))
            return r(f, *args, **kwargs)

        return _wrapper

    return _decorator


def poll(max_attempts: int, interval: float,
         check: Callable[[int], bool]) -> bool:
    """Call check until it returns True, at most max_attempts times.

    The first call happens immediately and later ones every ``interval``
    seconds.  ``check`` receives the attempt number, starting at 1.

    :returns: True if check succeeded, False if every attempt failed.
    """
    attempts = itertools.count(1)
    r = tenacity.Retrying(
        before_sleep=tenacity.before_sleep_log(LOG, logging.DEBUG),
        stop=tenacity.stop_after_attempt(max_attempts),
        wait=tenacity.wait_fixed(interval),
        retry=tenacity.retry_if_result(lambda success: not success),
        retry_error_callback=lambda retry_state: False)
    return r(lambda: bool(check(next(attempts))))


def platform_matches(current_platform: str, connector_platform: str) -> bool:
    wanted = connector_platform.upper()
    return wanted == 'ALL' or wanted == current_platform.upper()


def os_matches(current_os: str, connector_os: str) -> bool:
    wanted = connector_os.upper()
    # sys.platform is 'linux', connectors use 'LINUX'
    return wanted == 'ALL' or wanted in current_os.upper()


def merge_dict(dict1: dict, dict2: dict) -> dict:
    """New dict with the keys of dict1 updated with those of dict2."""
    for name, value in (('dict1', dict1), ('dict2', dict2)):
        if type(value) is not dict:
            raise TypeError("%s is not a dictionary" % name)
    merged = dict(dict1)
    merged.update(dict2)
    return merged


def _masked(value):
    if isinstance(value, dict):
        return strutils.mask_dict_password(value)
    if isinstance(value, str):
        return strutils.mask_password(value)
    return value


def trace(f: Callable) -> Callable:
    """Log calls to f at DEBUG level with arguments, result and duration.

    Passwords are masked.  Methods log to the logger of their instance
    module.  Put it as the innermost decorator so the logged name is the
    one of the decorated function.
    """
    func_name = f.__name__

    @functools.wraps(f)
    def trace_logging_wrapper(*args, **kwargs):
        owner = args[0] if args else kwargs.get('self')
        if owner is not None and hasattr(owner, '__module__'):
            logger = logging.getLogger(owner.__module__)
        else:
            logger = LOG

        if not logger.isEnabledFor(py_logging.DEBUG):
            return f(*args, **kwargs)

        call_args = inspect.getcallargs(f, *args, **kwargs)
        logger.debug('==> %(func)s: call %(all_args)r',
                     {'func': func_name,
                      'all_args': strutils.mask_password(str(call_args))})

        start = time.monotonic()
        try:
            result = f(*args, **kwargs)
        except Exception as exc:
            logger.debug('<== %(func)s: exception (%(time)dms) %(exc)r',
                         {'func': func_name,
                          'time': (time.monotonic() - start) * 1000,
                          'exc': exc})
            raise

        logger.debug('<== %(func)s: return (%(time)dms) %(result)r',
                     {'func': func_name,
                      'time': (time.monotonic() - start) * 1000,
                      'result': _masked(result)})
        return result
    return trace_logging_wrapper


def to_float(text: Union[bytes, str, None]) -> Optional[float]:
    """Parse command output as a number, None if it isn't one."""
    if isinstance(text, bytes):
        text = text.decode('utf-8')
    try:
        return float(text.strip())
    except (AttributeError, ValueError):
        return None


def get_dev_path(connection_properties, device_info) -> str:
    """Return the device that was returned when connecting a volume."""
    if device_info and device_info.get('path'):
        return device_info['path']

    return connection_properties.device_path or ''
