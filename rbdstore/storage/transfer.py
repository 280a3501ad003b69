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

"""Streaming of RBD image diffs between hosts.

A volume with snapshots ``s0`` .. ``sN`` is replicated by replaying one
diff per snapshot, oldest first, then the diff from ``sN`` to the live
image::

    rbd export-diff pool1/container_a@s0 - | rbd import-diff - pool2/container_a
    rbd export-diff pool1/container_a@s1 --from-snap s0 - | rbd import-diff ...
    rbd export-diff pool1/container_a --from-snap s1 - | rbd import-diff ...

The target image must exist before the first diff is imported. See
:py:func:`diff_chain`.
"""

import asyncio
import contextlib
import logging
import os
import shlex
import subprocess

import rbdstore.config
import rbdstore.exc
import rbdstore.utils
from rbdstore.exc import BackendError, TransferError

LOGGER = logging.getLogger("rbdstore.storage.transfer")


async def handle_streams(
    stream_in, stream_out, progress_callback=None, buffer_size=None
):
    """
    Copy stream_in to stream_out until EOF.

    :param stream_in: StreamReader object to read data from
    :param stream_out: StreamWriter object to write data to
    :param progress_callback: callable function to report progress, will be
        given copied data size (it should accumulate internally)
    :param buffer_size: size of a single read
    :return: number of bytes copied
    """
    if buffer_size is None:
        buffer_size = rbdstore.config.defaults["transfer_buffer_size"]
    bytes_copied = 0
    while True:
        buf = await stream_in.read(buffer_size)
        if not buf:
            # done
            break

        if callable(progress_callback):
            progress_callback(len(buf))
        stream_out.write(buf)
        await stream_out.drain()
        bytes_copied += len(buf)
    return bytes_copied


class ProgressWriter:
    """Writer wrapper reporting the size of every written chunk"""

    def __init__(self, writer, progress_callback):
        self.writer = writer
        self.progress_callback = progress_callback

    def write(self, data):
        self.progress_callback(len(data))
        self.writer.write(data)

    async def drain(self):
        await self.writer.drain()

    def close(self):
        self.writer.close()


class StreamConnection:
    """Duplex connection over an asyncio (reader, writer) pair"""

    def __init__(self, reader, writer):
        self.reader = reader
        self.writer = writer

    async def read(self, n=-1):
        return await self.reader.read(n)

    def write(self, data):
        self.writer.write(data)

    async def drain(self):
        await self.writer.drain()

    def close(self):
        self.writer.close()


def _stderr_text(stderr):
    return stderr.decode(errors="replace")


async def _spawn(cmd, **kwargs):
    with rbdstore.utils.enoent_is_spe(cmd[0]):
        return await asyncio.create_subprocess_exec(
            *cmd,
            env=rbdstore.utils.subprocess_env(),
            close_fds=True,
            **kwargs
        )


async def send(cmd, conn, progress_callback=None, log=LOGGER):
    """Run export command *cmd* and stream its output into *conn*.

    *conn* is closed when done, regardless of the outcome.

    :raises TransferError: the command failed or *conn* could not be written
    """
    log.debug("Sending: %s", shlex.join(cmd))
    try:
        p = await _spawn(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        stderr_task = asyncio.ensure_future(p.stderr.read())
        errors = []
        try:
            await handle_streams(p.stdout, conn, progress_callback)
        except OSError as e:
            errors.append(e)
            with contextlib.suppress(ProcessLookupError):
                p.kill()
        stderr = _stderr_text(await stderr_task)
        returncode = await p.wait()
    finally:
        conn.close()

    if returncode != 0:
        errors.insert(0, BackendError(cmd, returncode, stderr))
    if errors:
        log.debug(
            "%s failed: %s",
            shlex.join(cmd),
            rbdstore.utils.sanitize_stderr_for_log(stderr.encode()),
        )
        raise TransferError(
            "Sending {} failed: {}".format(
                shlex.join(cmd), "; ".join(str(e) for e in errors)
            ),
            errors,
            stderr,
        )


async def receive(cmd, conn, write_wrapper=None, log=LOGGER):
    """Run import command *cmd* feeding it everything read from *conn*.

    Data is copied in a background task while the command runs; both
    outcomes are collected before returning.

    :param write_wrapper: callable wrapping the command's stdin writer, for
        example to report progress with :py:class:`ProgressWriter`
    :raises TransferError: listing every failure of the command and the copy
    """
    log.debug("Receiving: %s", shlex.join(cmd))
    p = await _spawn(
        cmd,
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    )
    stdin = p.stdin
    if write_wrapper is not None:
        stdin = write_wrapper(stdin)

    async def copy():
        try:
            return await handle_streams(conn, stdin)
        finally:
            stdin.close()

    copy_task = asyncio.ensure_future(copy())
    stderr = _stderr_text(await p.stderr.read())
    returncode = await p.wait()
    if returncode != 0 and not copy_task.done():
        # the copy fails on its own once stdin is gone, unless conn stalls
        _, pending = await asyncio.wait(
            [copy_task],
            timeout=rbdstore.config.defaults["transfer_cancel_timeout"],
        )
        if pending:
            copy_task.cancel()
    (copy_result,) = await asyncio.gather(copy_task, return_exceptions=True)

    errors = []
    if returncode != 0:
        errors.append(BackendError(cmd, returncode, stderr))
    if isinstance(copy_result, BaseException) and not isinstance(
        copy_result, asyncio.CancelledError
    ):
        errors.append(copy_result)
    if errors:
        log.debug(
            "%s failed: %s",
            shlex.join(cmd),
            rbdstore.utils.sanitize_stderr_for_log(stderr.encode()),
        )
        raise TransferError(
            "Problem with {}: {}".format(
                shlex.join(cmd), "; ".join(str(e) for e in errors)
            ),
            errors,
            stderr,
        )
    return copy_result


async def pipe(send_cmd, recv_cmd, log=LOGGER):
    """Run ``send_cmd | recv_cmd`` on the local host

    :raises TransferError: if any of the commands failed
    """
    log.debug("Piping: %s | %s", shlex.join(send_cmd), shlex.join(recv_cmd))
    read_fd, write_fd = os.pipe()
    try:
        recv_p = await _spawn(
            recv_cmd,
            stdin=read_fd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        try:
            send_p = await _spawn(
                send_cmd,
                stdin=subprocess.DEVNULL,
                stdout=write_fd,
                stderr=subprocess.PIPE,
            )
        except rbdstore.exc.StoragePoolException:
            os.close(write_fd)
            write_fd = None
            await recv_p.communicate()
            raise
    finally:
        os.close(read_fd)
        if write_fd is not None:
            os.close(write_fd)

    (_, send_err), (_, recv_err) = await asyncio.gather(
        send_p.communicate(), recv_p.communicate()
    )
    errors = []
    stderr = ""
    for cmd, proc, err in (
        (send_cmd, send_p, send_err),
        (recv_cmd, recv_p, recv_err),
    ):
        if proc.returncode != 0:
            errors.append(BackendError(cmd, proc.returncode, _stderr_text(err)))
            stderr += _stderr_text(err)
    if errors:
        raise TransferError(
            "Copy failed: {}".format("; ".join(str(e) for e in errors)),
            errors,
            stderr,
        )


def diff_chain(volume_name, snapshots):
    """Diffs to replay, in order, to replicate a volume with its history

    :param str volume_name: pool qualified image name
    :param list snapshots: snapshot names, oldest first
    :returns: list of ``(source, from_snapshot)`` tuples; *from_snapshot* is
        None for the first, full, diff
    """
    chain = []
    previous = None
    for snapshot in snapshots:
        chain.append(("{}@{}".format(volume_name, snapshot), previous))
        previous = snapshot
    chain.append((volume_name, previous))
    return chain
