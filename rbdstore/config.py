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

#
# THIS FILE SHOULD BE CONFIGURED PER DEPLOYMENT
# pool specific settings belong to the pool config, not here
#

'''Constants which can be configured in one place'''

system_path = {
    'rbd_binary': 'rbd',
    'ceph_binary': 'ceph',
    'sudo_binary': 'sudo',

    # kernel registry of mapped RBD devices, one numbered directory each
    'rbd_sysfs_dir': '/sys/devices/rbd',
    # mapped device N is exposed as this prefix followed by N
    'rbd_dev_prefix': '/dev/rbd',
}

defaults = {
    'ceph_cluster_name': 'ceph',
    'ceph_user_name': 'admin',

    # kept minimal so that the kernel client understands every feature
    'rbd_features': 'layering',

    'rbd_unmap_busy_retries': 10,
    'rbd_unmap_busy_delay': 1,

    'transfer_buffer_size': 409600,
    # seconds to wait for a copy to fail after its consumer is gone
    'transfer_cancel_timeout': 5,
}
