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

"""Translation between volume identities and RBD image names.

The backend keeps no metadata besides image and snapshot names, so the
whole identity of a volume is packed into its name::

    [<pool>/][zombie_]<type>_<name>[_<filesystem>][.block|.iso][@<snapshot>]

The filesystem token is only written for images, ``.iso`` only for custom
volumes. Decoding an image name containing ``_`` is ambiguous: the last
``_``-delimited token is always taken to be the filesystem hint.
"""

import uuid

import rbdstore.exc
import rbdstore.storage
from rbdstore.exc import MalformedNameError, UnrecognizedTypeError
from rbdstore.storage import (
    CONTENT_TYPE_BLOCK,
    CONTENT_TYPE_FS,
    CONTENT_TYPE_ISO,
    VOLUME_TYPE_CUSTOM,
    VOLUME_TYPE_IMAGE,
    VOLUME_TYPES,
)

ZOMBIE_PREFIX = "zombie_"
ZOMBIE_SNAPSHOT_PREFIX = "zombie_snapshot_"

_CONTENT_SUFFIXES = {
    CONTENT_TYPE_BLOCK: ".block",
    CONTENT_TYPE_ISO: ".iso",
}


def encode(vol, with_pool=False):
    """Return RBD image name of *vol*, optionally pool qualified"""
    out = vol.vol_type + "_" + vol.name
    if vol.zombie:
        out = ZOMBIE_PREFIX + out
    if vol.vol_type == VOLUME_TYPE_IMAGE and vol.filesystem:
        out += "_" + vol.filesystem
    if vol.content_type == CONTENT_TYPE_BLOCK or (
        vol.content_type == CONTENT_TYPE_ISO
        and vol.vol_type == VOLUME_TYPE_CUSTOM
    ):
        out += _CONTENT_SUFFIXES[vol.content_type]
    if vol.snapshot is not None:
        out += "@" + vol.snapshot
    if with_pool:
        out = "{}/{}".format(vol.pool, out)
    return out


def _split_pool(name):
    pool, sep, rest = name.partition("/")
    if not sep:
        raise MalformedNameError(name, "Pool delimiter not found")
    return pool, rest


def _split_type(name, rest):
    for vol_type in VOLUME_TYPES:
        if rest.startswith(vol_type + "_"):
            return vol_type, rest[len(vol_type) + 1 :]
    raise UnrecognizedTypeError(name, "Unrecognized volume type")


def decode(name, with_pool=True, pool=None):
    """Decode RBD image name into :py:class:`rbdstore.storage.Volume`

    :param str name: encoded name, with snapshot part if any
    :param bool with_pool: *name* is qualified with ``<pool>/``
    :param str pool: pool to use when *name* is not pool qualified
    :raises MalformedNameError: pool delimiter missing
    :raises UnrecognizedTypeError: no known type prefix
    """
    rest = name
    if with_pool:
        pool, rest = _split_pool(name)

    zombie = rest.startswith(ZOMBIE_PREFIX)
    if zombie:
        rest = rest[len(ZOMBIE_PREFIX) :]

    vol_type, rest = _split_type(name, rest)

    snapshot = None
    if "@" in rest:
        rest, _, snapshot = rest.rpartition("@")

    content_type = CONTENT_TYPE_FS
    if rest.endswith(".block"):
        rest = rest[: -len(".block")]
        content_type = CONTENT_TYPE_BLOCK
    elif vol_type == VOLUME_TYPE_CUSTOM and rest.endswith(".iso"):
        rest = rest[: -len(".iso")]
        content_type = CONTENT_TYPE_ISO

    filesystem = None
    if vol_type == VOLUME_TYPE_IMAGE and "_" in rest:
        rest, _, filesystem = rest.rpartition("_")

    if not rest:
        raise MalformedNameError(name, "Empty volume name")

    try:
        return rbdstore.storage.Volume(
            pool,
            vol_type,
            rest,
            content_type,
            filesystem=filesystem,
            zombie=zombie,
            snapshot=snapshot,
        )
    except rbdstore.exc.StorageValueError as e:
        raise MalformedNameError(name, str(e)) from e


def parse_clone(name):
    """Split ``<pool>/[zombie_]<type>_<name>`` as listed by ``rbd children``

    Returns tuple ``(pool, vol_type, name, zombie)``. The name is returned
    with any content suffix or filesystem token still attached.
    """
    pool, rest = _split_pool(name)
    zombie = rest.startswith(ZOMBIE_PREFIX)
    if zombie:
        rest = rest[len(ZOMBIE_PREFIX) :]
    vol_type, sep, rest = rest.partition("_")
    if not sep:
        raise MalformedNameError(name, "Type separator not found")
    if vol_type not in VOLUME_TYPES:
        raise UnrecognizedTypeError(name, "Unrecognized volume type")
    return pool, vol_type, rest, zombie


def is_zombie_snapshot(snapshot):
    """Whether *snapshot* was renamed by a deletion that had to be deferred"""
    return snapshot.startswith(ZOMBIE_PREFIX)


def zombie_snapshot_name():
    """Fresh unique name for a snapshot whose deletion is deferred"""
    return ZOMBIE_SNAPSHOT_PREFIX + str(uuid.uuid4())


def zombie_volume(vol):
    """Identity *vol* gets renamed to when its deletion is deferred.

    The name gets a unique suffix, so that a new volume of the same name can
    be created while the old one is still around.
    """
    return vol.replace(
        name="{}_{}".format(vol.name, uuid.uuid4()),
        zombie=True,
        snapshot=None,
    )
