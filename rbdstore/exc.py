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

"""
rbdstore exception hierarchy
"""

import shlex


class StorageException(Exception):
    """Exception that can be shown to the user"""


class StorageValueError(StorageException, ValueError):
    """Cannot set some value, because it is invalid, out of bounds, etc."""


class StoragePoolException(StorageException):
    """A general storage pool exception"""


class BackendError(StoragePoolException):
    """Backend command exited with an error.

    :param cmd: argument list of the failed command
    :param int returncode: exit code of the command
    :param str stderr: what the command printed on its error output
    """

    def __init__(self, cmd, returncode, stderr, msg=None):
        super().__init__(
            msg
            or "{} failed with exit code {}: {}".format(
                shlex.join(cmd), returncode, stderr.strip()
            )
        )
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr


class DeviceBusyError(BackendError):
    """Backend reported EBUSY (device or resource busy)"""


class InvalidArgumentError(BackendError):
    """Backend reported EINVAL.

    Depending on the operation this often means the entity is already in the
    requested state (already unmapped, already unprotected).
    """


class NotFoundError(StoragePoolException, KeyError):
    """The backend has no such entity (no snapshots, no clones, no parent)"""

    def __init__(self, msg):
        super().__init__(msg)

    def __str__(self):
        # KeyError overrides __str__ method
        return StoragePoolException.__str__(self)


class NotMappedError(StoragePoolException):
    """Volume is not mapped to a kernel block device"""

    def __init__(self, vol, msg=None):
        super().__init__(
            msg or "Volume {!r} not mapped to an RBD device".format(str(vol))
        )
        self.vol = vol


class NameDecodeError(StoragePoolException, ValueError):
    """Backend name cannot be decoded into a volume identity"""

    def __init__(self, name, msg):
        super().__init__("{}: {!r}".format(msg, name))
        self.name = name


class MalformedNameError(NameDecodeError):
    """Backend name lacks a mandatory delimiter"""


class UnrecognizedTypeError(NameDecodeError):
    """Backend name does not start with any known volume type prefix"""


class TransferError(StoragePoolException):
    """Sending or receiving volume data failed.

    :param errors: every failure collected during the transfer
    :param str stderr: diagnostics printed by the backend process
    """

    def __init__(self, msg, errors=(), stderr=''):
        super().__init__(msg)
        self.errors = list(errors)
        self.stderr = stderr
