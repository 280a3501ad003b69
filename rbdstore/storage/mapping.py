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

"""Lookup of RBD images mapped by the kernel client.

Every mapped image has a numbered directory in the kernel registry
(``/sys/devices/rbd/<N>``) with ``pool``, ``name`` and ``current_snap``
attributes; the block device is ``/dev/rbd<N>``.
"""

import collections
import os

import rbdstore.config

MappedDevice = collections.namedtuple(
    "MappedDevice", ["index", "pool", "name", "snapshot"]
)

#: ``current_snap`` values meaning the live image is mapped
LIVE_SNAPSHOT_MARKERS = ("", "-")


def _read_attr(path):
    try:
        with open(path, encoding="utf-8") as attr_file:
            return attr_file.read().strip()
    except FileNotFoundError:
        return None


def mapped_devices(sysfs_dir=None):
    """Iterate over :py:class:`MappedDevice` entries of the kernel registry

    A missing registry (``rbd`` module not loaded) yields nothing.
    """
    if sysfs_dir is None:
        sysfs_dir = rbdstore.config.system_path["rbd_sysfs_dir"]
    try:
        entries = sorted(os.listdir(sysfs_dir))
    except FileNotFoundError:
        return
    for entry in entries:
        if not entry.isdigit():
            continue
        path = os.path.join(sysfs_dir, entry)
        if not os.path.isdir(path):
            continue
        pool = _read_attr(os.path.join(path, "pool"))
        name = _read_attr(os.path.join(path, "name"))
        if pool is None or name is None:
            continue
        snapshot = _read_attr(os.path.join(path, "current_snap"))
        yield MappedDevice(int(entry), pool, name, snapshot)


def find_device(devices, osd_pool, rbd_name):
    """Find the device a given image (or image snapshot) is mapped to

    :param devices: iterable of :py:class:`MappedDevice`
    :param str osd_pool: name of the OSD pool
    :param str rbd_name: image name, with ``@<snapshot>`` for a snapshot
    :returns: the first matching :py:class:`MappedDevice` or None
    """
    image, sep, snapshot = rbd_name.partition("@")
    for dev in devices:
        if dev.pool != osd_pool or dev.name != image:
            continue
        if sep:
            if dev.snapshot != snapshot:
                continue
        elif dev.snapshot not in LIVE_SNAPSHOT_MARKERS + (None,):
            continue
        return dev
    return None


def device_path(index):
    """Block device path for registry entry *index*"""
    return "{}{}".format(rbdstore.config.system_path["rbd_dev_prefix"], index)
