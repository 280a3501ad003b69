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

"""Driver for storing volumes as Ceph RBD images.

Image naming scheme is described in :py:mod:`rbdstore.storage.naming`.

Clones depend on the snapshot they were created from, so a snapshot (and
the image owning it) cannot be removed while a clone exists. Deleting such
an entity renames it into *zombie* form instead:

    - an image becomes ``zombie_<type>_<name>_<uuid>``;
    - a snapshot becomes ``zombie_snapshot_<uuid>``.

Whenever the last dependent of a zombie goes away, the zombie is removed as
well, which may in turn release its own parent.
"""

import asyncio
import enum
import errno
import functools
import json
import logging
import os
import shlex
import subprocess

from typing import List, Optional, Tuple

import rbdstore.config
import rbdstore.storage
import rbdstore.utils
from rbdstore.exc import (
    BackendError,
    DeviceBusyError,
    InvalidArgumentError,
    NameDecodeError,
    NotFoundError,
    NotMappedError,
    StoragePoolException,
)
from rbdstore.storage import mapping, naming, transfer

LOGGER = logging.getLogger("rbdstore.storage.rbd")


class DeleteResult(enum.Enum):
    """Outcome of a deletion request"""

    #: the entity is physically gone
    DELETED = "deleted"
    #: something depends on the entity, it was only marked for deletion
    ZOMBIFIED = "zombified"


async def rbd_coro(cmd: List[str], log: logging.Logger = LOGGER) -> str:
    """Call :program:`rbd` (or :program:`ceph`) and return its output"""
    with rbdstore.utils.enoent_is_spe(cmd[0]):
        p = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=rbdstore.utils.subprocess_env(),
            close_fds=True,
        )
    stdout, stderr = await p.communicate()
    return _process_rbd_output(cmd, p.returncode, stdout, stderr, log=log)


def _process_rbd_output(
    cmd: List[str],
    returncode: int,
    stdout: bytes,
    stderr: bytes,
    log: logging.Logger,
) -> str:
    thecmd_shell = shlex.join(cmd)
    err = stderr.decode(errors="replace")
    if stdout:
        numlines = len(stdout.splitlines())
        if numlines > 2:
            log.debug("%s -> (%s lines)", thecmd_shell, numlines)
        else:
            log.debug("%s -> %s", thecmd_shell, stdout.decode().rstrip())
    else:
        log.debug("%s -> (no output)", thecmd_shell)
    if returncode == 0 and err:
        log.warning(
            "%s succeeded but produced stderr: %s",
            thecmd_shell,
            rbdstore.utils.sanitize_stderr_for_log(stderr),
        )
    elif returncode != 0:
        log.debug(
            "%s failed with %s and produced stderr: %s",
            thecmd_shell,
            returncode,
            rbdstore.utils.sanitize_stderr_for_log(stderr),
        )
        if returncode == errno.EBUSY:
            raise DeviceBusyError(cmd, returncode, err)
        if returncode == errno.EINVAL:
            raise InvalidArgumentError(cmd, returncode, err)
        raise BackendError(cmd, returncode, err)
    return stdout.decode()


class RBDPool(rbdstore.storage.Pool):
    """Ceph RBD based pool implementation

    Volumes are stored as images in the OSD pool *osd_pool_name* (defaults
    to the pool name) of Ceph cluster *cluster_name*, accessed as client
    *user_name*. Snapshots are RBD snapshots, clones are RBD clones
    (copy-on-write children of a protected snapshot).

    .. warning::
        This driver does not keep any state of its own, everything is read
        back from the cluster. Images it cannot decode are ignored.
    """

    driver = "rbd"

    def __init__(
        self,
        *,
        name: str,
        osd_pool_name: Optional[str] = None,
        cluster_name: Optional[str] = None,
        user_name: Optional[str] = None,
        rbd_features: Optional[str] = None,
        data_pool_name: Optional[str] = None
    ):
        super().__init__(name=name)
        self.osd_pool_name = osd_pool_name or name
        self.cluster_name = (
            cluster_name or rbdstore.config.defaults["ceph_cluster_name"]
        )
        self.user_name = user_name or rbdstore.config.defaults["ceph_user_name"]
        self.rbd_features = (
            rbd_features or rbdstore.config.defaults["rbd_features"]
        )
        self.data_pool_name = data_pool_name or None

    def __repr__(self):
        return "<{} at {:#x} name={!r} osd_pool_name={!r}>".format(
            type(self).__name__, id(self), self.name, self.osd_pool_name
        )

    @property
    def config(self):
        return {
            "name": self.name,
            "driver": self.driver,
            "osd_pool_name": self.osd_pool_name,
            "cluster_name": self.cluster_name,
            "user_name": self.user_name,
            "rbd_features": self.rbd_features,
            "data_pool_name": self.data_pool_name,
        }

    # Command line construction

    @staticmethod
    def _sudo(cmd):
        if os.getuid() != 0:
            return [rbdstore.config.system_path["sudo_binary"]] + cmd
        return cmd

    def _rbd_cmd(self, *args, pool=True):
        cmd = [
            rbdstore.config.system_path["rbd_binary"],
            "--id",
            self.user_name,
            "--cluster",
            self.cluster_name,
        ]
        if pool:
            cmd += ["--pool", self.osd_pool_name]
        return self._sudo(cmd + list(args))

    def _ceph_cmd(self, *args):
        cmd = [
            rbdstore.config.system_path["ceph_binary"],
            "--name",
            "client." + self.user_name,
            "--cluster",
            self.cluster_name,
        ]
        return self._sudo(cmd + list(args))

    def _feature_args(self):
        args = []
        for feature in self.rbd_features.split(","):
            feature = feature.strip()
            if feature:
                args += ["--image-feature", feature]
        if self.data_pool_name:
            args += ["--data-pool", self.data_pool_name]
        return args

    async def _rbd(self, *args, pool=True):
        return await rbd_coro(self._rbd_cmd(*args, pool=pool), log=self.log)

    def _qualified(self, vol):
        return "{}/{}".format(self.osd_pool_name, naming.encode(vol))

    # OSD pool

    async def osd_pool_exists(self) -> bool:
        """Check whether the OSD pool exists in the cluster"""
        try:
            await rbd_coro(
                self._ceph_cmd("osd", "pool", "get", self.osd_pool_name, "size"),
                log=self.log,
            )
        except BackendError as e:
            if e.returncode == errno.ENOENT:
                return False
            raise
        return True

    async def osd_delete_pool(self):
        """Delete the OSD pool, with everything in it"""
        await rbd_coro(
            self._ceph_cmd(
                "osd",
                "pool",
                "delete",
                self.osd_pool_name,
                self.osd_pool_name,
                "--yes-i-really-really-mean-it",
            ),
            log=self.log,
        )

    async def setup(self):
        if not await self.osd_pool_exists():
            raise StoragePoolException(
                "OSD pool {!r} does not exist in cluster {!r}".format(
                    self.osd_pool_name, self.cluster_name
                )
            )

    async def destroy(self):
        if await self.osd_pool_exists():
            await self.osd_delete_pool()

    # Volumes

    def init_volume(self, vol_type, name, content_type="filesystem", **kwargs):
        return rbdstore.storage.Volume(
            self.osd_pool_name, vol_type, name, content_type, **kwargs
        )

    def get_volume(self, vid):
        return naming.decode(vid, with_pool=False, pool=self.osd_pool_name)

    async def list_volumes(self):
        """Return volumes in this pool, zombies excluded"""
        out = await self._rbd("--format", "json", "ls")
        volumes = []
        for image in json.loads(out or "[]"):
            try:
                vol = self.get_volume(image)
            except NameDecodeError as e:
                self.log.debug("Ignoring image %s: %s", image, e)
                continue
            if vol.zombie:
                continue
            volumes.append(vol)
        return volumes

    async def create_volume(self, vol, size):
        """Create an empty image for *vol*

        :param size: size in bytes, or a string like ``10GiB``
        """
        if isinstance(size, str):
            size = rbdstore.utils.parse_size(size)
        await self._rbd(
            *self._feature_args(),
            "--size",
            "{}B".format(size),
            "create",
            naming.encode(vol.volume),
        )
        return vol.volume

    async def delete_volume_image(self, vol):
        """Remove image of *vol*, without any dependency handling"""
        await self._rbd("rm", naming.encode(vol.volume))

    async def resize_volume(self, vol, size, allow_shrink=False):
        """Resize image of *vol*. Any filesystem inside is not touched."""
        if isinstance(size, str):
            size = rbdstore.utils.parse_size(size)
        args = ["resize", "--size", "{}B".format(size)]
        if allow_shrink:
            args.append("--allow-shrink")
        await self._rbd(*args, naming.encode(vol.volume))

    async def rename_volume(self, vol, new_name):
        new_vol = vol.volume.replace(name=new_name)
        await self._rbd(
            "mv", self._qualified(vol.volume), self._qualified(new_vol),
            pool=False
        )
        return new_vol

    async def mark_volume_deleted(self, vol, new_name):
        """Rename image of *vol* into zombie form"""
        new_vol = vol.volume.replace(name=new_name, zombie=True)
        await self._rbd(
            "mv", self._qualified(vol.volume), self._qualified(new_vol),
            pool=False
        )
        return new_vol

    # Snapshots and clones

    async def create_snapshot(self, vol, snapshot):
        await self._rbd(
            "snap", "create", "--snap", snapshot, naming.encode(vol.volume)
        )
        return vol.snapshot_of(snapshot)

    async def protect_snapshot(self, vol, snapshot):
        """Protect snapshot from removal, so that it can be cloned.

        Protecting an already protected snapshot is not an error.
        """
        try:
            await self._rbd(
                "snap", "protect", "--snap", snapshot, naming.encode(vol.volume)
            )
        except (DeviceBusyError, InvalidArgumentError):
            self.log.debug(
                "Snapshot %s@%s already protected",
                naming.encode(vol.volume), snapshot
            )

    async def unprotect_snapshot(self, vol, snapshot):
        """Allow snapshot removal. Unprotecting twice is not an error."""
        try:
            await self._rbd(
                "snap", "unprotect", "--snap", snapshot,
                naming.encode(vol.volume)
            )
        except (DeviceBusyError, InvalidArgumentError):
            self.log.debug(
                "Snapshot %s@%s already unprotected",
                naming.encode(vol.volume), snapshot
            )

    async def rename_snapshot(self, vol, old_snapshot, new_snapshot):
        await self._rbd(
            "snap",
            "rename",
            self._qualified(vol.snapshot_of(old_snapshot)),
            self._qualified(vol.snapshot_of(new_snapshot)),
            pool=False,
        )
        return vol.snapshot_of(new_snapshot)

    async def delete_snapshot_image(self, vol, snapshot):
        """Remove snapshot, without any dependency handling"""
        await self._rbd("snap", "rm", naming.encode(vol.snapshot_of(snapshot)))

    async def list_volume_snapshots(self, vol) -> List[str]:
        """Names of all snapshots of *vol*, oldest first

        :raises NotFoundError: there are no snapshots
        """
        out = await self._rbd(
            "--format", "json", "snap", "ls", naming.encode(vol.volume)
        )
        snapshots = []
        for entry in json.loads(out or "[]"):
            name = entry.get("name") if isinstance(entry, dict) else None
            if not isinstance(name, str):
                raise StoragePoolException(
                    "Unexpected snapshot entry {!r} of {}".format(
                        entry, naming.encode(vol.volume)
                    )
                )
            snapshots.append(name)
        if not snapshots:
            raise NotFoundError(
                "No snapshots of {}".format(naming.encode(vol.volume))
            )
        return snapshots

    async def list_snapshot_clones(self, vol, snapshot) -> List[str]:
        """Pool qualified names of all clones of a snapshot

        :raises NotFoundError: there are no clones
        """
        out = await self._rbd(
            "children",
            "--image",
            naming.encode(vol.volume),
            "--snap",
            snapshot,
        )
        clones = out.split()
        if not clones:
            raise NotFoundError(
                "No clones of {}".format(naming.encode(vol.snapshot_of(snapshot)))
            )
        return clones

    async def get_volume_parent(self, vol) -> rbdstore.storage.Volume:
        """Snapshot *vol* was cloned from

        :raises NotFoundError: *vol* is not a clone
        """
        out = await self._rbd("info", naming.encode(vol.volume))
        for line in out.splitlines():
            key, sep, value = line.strip().partition(":")
            if sep and key == "parent":
                return naming.decode(value.strip())
        raise NotFoundError(
            "{} has no parent".format(naming.encode(vol.volume))
        )

    async def create_clone(self, src, snapshot, dst):
        """Create *dst* as copy-on-write clone of snapshot of *src*"""
        await self._rbd(
            *self._feature_args(),
            "clone",
            self._qualified(src.snapshot_of(snapshot)),
            self._qualified(dst.volume),
            pool=False,
        )
        return dst.volume

    # Kernel mapping

    async def map_volume(self, vol) -> str:
        """Map image (or snapshot) of *vol*, return the device path"""
        out = await self._rbd("map", naming.encode(vol))
        prefix = rbdstore.config.system_path["rbd_dev_prefix"]
        idx = out.find(prefix)
        if idx < 0:
            raise StoragePoolException(
                "Failed to detect mapped device path of {}".format(
                    naming.encode(vol)
                )
            )
        return out[idx:].split()[0]

    async def _unmap_once(self, vol):
        await rbdstore.utils.retry_async(
            functools.partial(self._rbd, "unmap", naming.encode(vol)),
            DeviceBusyError,
            rbdstore.config.defaults["rbd_unmap_busy_retries"],
            rbdstore.config.defaults["rbd_unmap_busy_delay"],
        )

    async def unmap_volume(self, vol, until_unmapped=False):
        """Unmap image (or snapshot) of *vol*.

        An image that is not mapped is not an error. Busy devices are retried
        a few times before giving up.

        :param until_unmapped: repeat until nothing is left mapped, the same
            image may be mapped more than once
        :raises DeviceBusyError: the device stayed busy
        """
        while True:
            try:
                await self._unmap_once(vol)
            except InvalidArgumentError:
                return
            if not until_unmapped:
                return

    async def get_mapped_dev_path(
        self, vol, map_if_missing=False
    ) -> Tuple[bool, str]:
        """Find the kernel device of *vol*

        :returns: tuple (whether it was mapped by this call, device path)
        :raises NotMappedError: not mapped and *map_if_missing* not set
        """
        dev = mapping.find_device(
            mapping.mapped_devices(), self.osd_pool_name, naming.encode(vol)
        )
        if dev is not None:
            return False, mapping.device_path(dev.index)
        if not map_if_missing:
            raise NotMappedError(vol)
        return True, await self.map_volume(vol)

    async def block_device(self, vol):
        """Return :py:class:`rbdstore.storage.BlockDevice` for *vol*,
        mapping it if needed. Snapshots are read-only."""
        _, path = await self.get_mapped_dev_path(vol, map_if_missing=True)
        return rbdstore.storage.BlockDevice(
            path, naming.encode(vol), rw=not vol.is_snapshot
        )

    # Dependency aware deletion

    async def delete_volume(self, vol, cascade=True) -> DeleteResult:
        """Delete *vol* with its snapshots, or mark it as zombie if any
        clone still depends on it.

        Zombie parents left behind by earlier deletions are released once
        their last dependent goes away.

        :param cascade: also release a zombie parent snapshot of *vol*
        """
        vol = vol.volume
        try:
            parent = await self.get_volume_parent(vol)
        except NotFoundError:
            parent = None
        try:
            snapshots = await self.list_volume_snapshots(vol)
        except NotFoundError:
            snapshots = []

        zombies = 0
        for snapshot in snapshots:
            # the volume itself is handled below
            result = await self.delete_volume_snapshot(
                vol, snapshot, cascade=False
            )
            if result is DeleteResult.ZOMBIFIED:
                zombies += 1

        await self.unmap_volume(vol, until_unmapped=True)
        if zombies:
            if vol.zombie:
                return DeleteResult.ZOMBIFIED
            new_vol = naming.zombie_volume(vol)
            await self.mark_volume_deleted(vol, new_vol.name)
            self.log.info(
                "%s has dependent clones, renamed to %s",
                naming.encode(vol),
                naming.encode(new_vol),
            )
            return DeleteResult.ZOMBIFIED

        await self.delete_volume_image(vol)

        if (
            cascade
            and parent is not None
            and (parent.zombie or naming.is_zombie_snapshot(parent.snapshot))
        ):
            await self.delete_volume_snapshot(parent.volume, parent.snapshot)
        return DeleteResult.DELETED

    async def delete_volume_snapshot(
        self, vol, snapshot, cascade=True
    ) -> DeleteResult:
        """Delete a snapshot of *vol*, or mark it as zombie if any live
        clone still depends on it.

        Zombie clones of the snapshot are deleted first.

        :param cascade: also delete *vol* if it is a zombie and this was its
            last snapshot
        """
        vol = vol.volume
        try:
            clones = await self.list_snapshot_clones(vol, snapshot)
        except NotFoundError:
            clones = []

        can_delete = True
        for clone in clones:
            _, _, _, zombie = naming.parse_clone(clone)
            if not zombie:
                can_delete = False
                continue
            clone_vol = naming.decode(clone)
            # the snapshot itself is handled below
            result = await self.delete_volume(clone_vol, cascade=False)
            if result is DeleteResult.ZOMBIFIED:
                can_delete = False

        if can_delete:
            await self._purge_snapshot(vol, snapshot, cascade)
            return DeleteResult.DELETED

        if naming.is_zombie_snapshot(snapshot):
            return DeleteResult.ZOMBIFIED

        await self.unmap_volume(vol.snapshot_of(snapshot), until_unmapped=True)
        new_snapshot = naming.zombie_snapshot_name()
        await self.rename_snapshot(vol, snapshot, new_snapshot)
        self.log.info(
            "%s has dependent clones, renamed to %s",
            naming.encode(vol.snapshot_of(snapshot)),
            new_snapshot,
        )
        return DeleteResult.ZOMBIFIED

    async def _purge_snapshot(self, vol, snapshot, cascade):
        await self.unprotect_snapshot(vol, snapshot)
        await self.unmap_volume(vol.snapshot_of(snapshot), until_unmapped=True)
        await self.delete_snapshot_image(vol, snapshot)

        if cascade and vol.zombie:
            try:
                await self.delete_volume(vol)
            except StoragePoolException as e:
                self.log.warning(
                    "Failed to release zombie %s: %s", naming.encode(vol), e
                )

    # Data transfer

    def export_diff_cmd(self, volume_name, from_snapshot=None):
        args = ["export-diff", str(volume_name)]
        if from_snapshot:
            args += ["--from-snap", from_snapshot]
        args.append("-")
        return self._rbd_cmd(*args, pool=False)

    def import_diff_cmd(self, volume_name):
        return self._rbd_cmd("import-diff", "-", str(volume_name), pool=False)

    async def send_volume(
        self, conn, volume_name, parent_snapshot=None, progress_callback=None
    ):
        """Stream a diff of *volume_name* into *conn*.

        *volume_name* is pool qualified and may name a snapshot. The diff
        starts at *parent_snapshot*, or contains the whole image if None.
        See :py:func:`rbdstore.storage.transfer.diff_chain` for the order in
        which diffs have to be sent.
        """
        await transfer.send(
            self.export_diff_cmd(volume_name, parent_snapshot),
            conn,
            progress_callback=progress_callback,
            log=self.log,
        )

    async def receive_volume(self, volume_name, conn, write_wrapper=None):
        """Apply a diff read from *conn* to existing image *volume_name*"""
        return await transfer.receive(
            self.import_diff_cmd(volume_name),
            conn,
            write_wrapper=write_wrapper,
            log=self.log,
        )

    async def copy_with_snapshots(
        self, source_name, target_name, parent_snapshot=None
    ):
        """Apply a diff of one image onto another within the cluster.

        Unlike :py:meth:`create_clone` the copy does not depend on the
        source afterwards.
        """
        await transfer.pipe(
            self.export_diff_cmd(source_name, parent_snapshot),
            self.import_diff_cmd(target_name),
            log=self.log,
        )
