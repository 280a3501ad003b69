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

""" rbdstore storage system"""

import importlib.metadata
import inspect

import lxml.etree

import rbdstore.exc
import rbdstore.log
import rbdstore.utils
from rbdstore.exc import StorageValueError

STORAGE_ENTRY_POINT = "rbdstore.storage"

VOLUME_TYPE_CONTAINER = "container"
VOLUME_TYPE_VM = "virtual-machine"
VOLUME_TYPE_IMAGE = "image"
VOLUME_TYPE_CUSTOM = "custom"
VOLUME_TYPES = (
    VOLUME_TYPE_CONTAINER,
    VOLUME_TYPE_VM,
    VOLUME_TYPE_IMAGE,
    VOLUME_TYPE_CUSTOM,
)

CONTENT_TYPE_FS = "filesystem"
CONTENT_TYPE_BLOCK = "block"
CONTENT_TYPE_ISO = "iso"
CONTENT_TYPES = (CONTENT_TYPE_FS, CONTENT_TYPE_BLOCK, CONTENT_TYPE_ISO)


class BlockDevice:
    """Represents a storage block device."""

    # pylint: disable=too-few-public-methods
    def __init__(self, path, name, rw=True, devtype="disk"):
        assert name, "Missing device name"
        assert path, "Missing device path"
        self.path = path
        self.name = name
        self.rw = rw
        self.devtype = devtype

    def __repr__(self):
        return "<{} {} name={!r} rw={!r}>".format(
            type(self).__name__, self.path, self.name, self.rw
        )


class Volume:
    """Identity of a volume, or of one of its snapshots, in a pool.

    Instances are transient: they are built from caller parameters or
    decoded from backend names (see :py:mod:`rbdstore.storage.naming`) and
    are never stored anywhere by the driver.

    :param str pool: name of the pool (OSD pool) holding the volume
    :param str vol_type: one of :py:data:`VOLUME_TYPES`
    :param str name: logical volume name
    :param str content_type: one of :py:data:`CONTENT_TYPES`; ``iso`` is
        only valid for custom volumes
    :param str filesystem: filesystem hint, only valid for images
    :param bool zombie: the volume was deleted by its owner, but is kept
        around because something still depends on it
    :param str snapshot: if set, this refers to the given snapshot of the
        volume instead of the live volume
    """

    def __init__(
        self,
        pool,
        vol_type,
        name,
        content_type=CONTENT_TYPE_FS,
        *,
        filesystem=None,
        zombie=False,
        snapshot=None
    ):
        if vol_type not in VOLUME_TYPES:
            raise StorageValueError(
                "Invalid volume type {!r}".format(vol_type)
            )
        if content_type not in CONTENT_TYPES:
            raise StorageValueError(
                "Invalid content type {!r}".format(content_type)
            )
        if content_type == CONTENT_TYPE_ISO and vol_type != VOLUME_TYPE_CUSTOM:
            raise StorageValueError(
                "ISO content is only supported on custom volumes"
            )
        if filesystem and vol_type != VOLUME_TYPE_IMAGE:
            raise StorageValueError(
                "Filesystem hint is only supported on image volumes"
            )
        if not name or "/" in name or "@" in name:
            raise StorageValueError("Invalid volume name {!r}".format(name))
        # the name would be read back as the content suffix
        if (
            content_type == CONTENT_TYPE_FS
            and not filesystem
            and (
                name.endswith(".block")
                or (vol_type == VOLUME_TYPE_CUSTOM and name.endswith(".iso"))
            )
        ):
            raise StorageValueError(
                "Volume name {!r} ends with a content suffix".format(name)
            )
        if filesystem and ("_" in filesystem or "." in filesystem):
            raise StorageValueError(
                "Invalid filesystem hint {!r}".format(filesystem)
            )
        if snapshot is not None and (not snapshot or "@" in snapshot):
            raise StorageValueError(
                "Invalid snapshot name {!r}".format(snapshot)
            )

        #: Pool the volume belongs to. May be None for names decoded
        #: without pool part.
        self.pool = pool
        self.vol_type = vol_type
        self.name = name
        self.content_type = content_type
        self.filesystem = filesystem or None
        self.zombie = bool(zombie)
        self.snapshot = snapshot

    def _identity(self):
        return (
            self.pool,
            self.vol_type,
            self.name,
            self.content_type,
            self.filesystem,
            self.zombie,
            self.snapshot,
        )

    def __eq__(self, other):
        if isinstance(other, Volume):
            # pylint: disable=protected-access
            return self._identity() == other._identity()
        return NotImplemented

    def __hash__(self):
        return hash(self._identity())

    def __repr__(self):
        return "<{} {!r} content_type={!r}>".format(
            type(self).__name__, str(self), self.content_type
        )

    def __str__(self):
        # pylint: disable=import-outside-toplevel
        import rbdstore.storage.naming

        return rbdstore.storage.naming.encode(
            self, with_pool=self.pool is not None
        )

    @property
    def is_snapshot(self):
        """Whether this refers to a snapshot rather than the live volume"""
        return self.snapshot is not None

    @property
    def volume(self):
        """The live volume this snapshot belongs to (or self)"""
        if self.snapshot is None:
            return self
        return self.replace(snapshot=None)

    def snapshot_of(self, snapshot):
        """Return identity of the given snapshot of this volume"""
        return self.replace(snapshot=snapshot)

    def replace(self, **changes):
        """Return a copy of this identity with some attributes changed"""
        config = self.config
        config.update(changes)
        return Volume(**config)

    @property
    def config(self):
        """return identity as a dictionary"""
        return {
            "pool": self.pool,
            "vol_type": self.vol_type,
            "name": self.name,
            "content_type": self.content_type,
            "filesystem": self.filesystem,
            "zombie": self.zombie,
            "snapshot": self.snapshot,
        }


class Pool:
    """A Pool is used to manage volumes of one storage backend.

    3rd Parties providing own storage implementations will need to extend
    this class.
    """  # pylint: disable=unused-argument

    def __init__(self, *, name):
        self.name = name
        self.log = rbdstore.log.get_pool_logger(name)

    def __eq__(self, other):
        if isinstance(other, Pool):
            return self.name == other.name
        if isinstance(other, str):
            return self.name == other
        return NotImplemented

    def __str__(self):
        return self.name

    def __hash__(self):
        return hash(self.name)

    def __xml__(self):
        config = _sanitize_config(self.config)
        return lxml.etree.Element("pool", **config)

    @property
    def config(self):
        """Returns the pool config to be written to the caller's store"""
        raise self._not_implemented("config")

    async def destroy(self):
        """Called when removing the pool. Use this for implementation specific
        clean up.
        """
        raise self._not_implemented("destroy")

    def init_volume(self, vol_type, name, content_type="filesystem", **kwargs):
        """
        Initialize a :py:class:`rbdstore.storage.Volume` living in this pool.
        """
        raise self._not_implemented("init_volume")

    async def setup(self):
        """Called when adding a pool to the system. Use this for implementation
        specific set up.
        """
        raise self._not_implemented("setup")

    async def list_volumes(self):
        """Return a list of volumes managed by this pool"""
        raise self._not_implemented("list_volumes")

    def get_volume(self, vid):
        """Return a volume with *vid* from this pool

        :raise NameDecodeError: if *vid* does not name a volume
        """
        raise self._not_implemented("get_volume")

    def _not_implemented(self, method_name):
        """Helper for emitting helpful `NotImplementedError` exceptions"""
        msg = "Pool driver {!s} has {!s}() not implemented"
        msg = msg.format(str(self.__class__.__name__), method_name)
        return NotImplementedError(msg)


def _sanitize_config(config):
    """Helper function to convert types to appropriate strings"""
    result = {}
    for key, value in config.items():
        if isinstance(value, bool):
            if value:
                result[key] = "True"
        elif value is not None:
            result[key] = str(value)
    return result


def pool_drivers():
    """Return a list of EntryPoints names"""
    return [
        ep.name
        for ep in importlib.metadata.entry_points(group=STORAGE_ENTRY_POINT)
    ]


def driver_parameters(name):
    """Get __init__ parameters from a driver with out `self` & `name`."""
    init_function = rbdstore.utils.get_entry_point_one(
        STORAGE_ENTRY_POINT, name
    ).__init__
    signature = inspect.signature(init_function)
    params = signature.parameters.keys()
    ignored_params = ["self", "name", "kwargs"]
    return [p for p in params if p not in ignored_params]
