#
# The rbdstore project
#
# This library is free software; you can redistribute it and/or
# modify it under the terms of the GNU Lesser General Public
# License as published by the Free Software Foundation; either
# version 2.1 of the License, or (at your option) any later version.
#
# This library is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public
# License along with this library; if not, see <https://www.gnu.org/licenses/>.
#

import asyncio
import contextlib
import importlib.metadata
import os
import string

import rbdstore.exc


def parse_size(size):
    units = [
        ('K', 1000), ('KB', 1000),
        ('M', 1000 * 1000), ('MB', 1000 * 1000),
        ('G', 1000 * 1000 * 1000), ('GB', 1000 * 1000 * 1000),
        ('T', 1000 ** 4), ('TB', 1000 ** 4),
        ('Ki', 1024), ('KiB', 1024),
        ('Mi', 1024 * 1024), ('MiB', 1024 * 1024),
        ('Gi', 1024 * 1024 * 1024), ('GiB', 1024 * 1024 * 1024),
        ('Ti', 1024 ** 4), ('TiB', 1024 ** 4),
        ('B', 1),
    ]

    size = size.strip().upper()
    if size.isdigit():
        return int(size)

    for unit, multiplier in units:
        if size.endswith(unit.upper()):
            size = size[:-len(unit)].strip()
            if not size.isdigit():
                break
            return int(size) * multiplier

    raise rbdstore.exc.StorageValueError("Invalid size: {0}.".format(size))


def get_entry_point_one(group, name):
    epoints = tuple(importlib.metadata.entry_points(group=group, name=name))
    if not epoints:
        raise KeyError(name)
    if len(epoints) > 1:
        raise TypeError(
            'more than 1 implementation of {!r} found: {}'.format(name,
                ', '.join(ep.value for ep in epoints)))
    return epoints[0].load()


async def retry_async(kallable, exception_class, times, sleep_between_tries):
    '''Await *kallable()* until it stops raising *exception_class*.

    The exception is re-raised once it occurred *times* times in a row.
    '''
    counter = times
    while True:
        try:
            return await kallable()
        except exception_class:
            counter = counter - 1
            if counter < 1:
                raise
            await asyncio.sleep(sleep_between_tries)


@contextlib.contextmanager
def enoent_is_spe(program):
    '''Turn a missing executable into a storage pool error'''
    try:
        yield
    except FileNotFoundError as exc:
        raise rbdstore.exc.StoragePoolException(
            "{} is not available on this system".format(program)
        ) from exc


def subprocess_env():
    '''Environment for backend commands, with predictable messages'''
    return {**os.environ, 'LC_ALL': 'C.UTF-8'}


def sanitize_stderr_for_log(untrusted_stderr: bytes) -> str:
    """Helper function to sanitize process stderr for logging"""
    # limit size
    untrusted_stderr = untrusted_stderr[:4096]
    # limit to subset of printable ASCII, especially do not allow newlines,
    # control characters etc
    allowed = string.ascii_letters + string.digits + string.punctuation + ' '
    allowed_bytes = allowed.encode()
    stderr = bytes(b if b in allowed_bytes else b'_'[0]
                   for b in untrusted_stderr)
    return stderr.decode('ascii')
