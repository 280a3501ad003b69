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

import os
import shutil
import tempfile
import unittest.mock

import rbdstore.config
import rbdstore.tests
from rbdstore.storage import mapping
from rbdstore.storage.mapping import MappedDevice


class SysfsMixin(object):
    '''Fake kernel registry of mapped RBD devices in a temporary directory'''

    def setUp(self):
        super().setUp()
        self.sysfs_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.sysfs_dir)
        patcher = unittest.mock.patch.dict(rbdstore.config.system_path,
            {'rbd_sysfs_dir': self.sysfs_dir, 'rbd_dev_prefix': '/dev/rbd'})
        patcher.start()
        self.addCleanup(patcher.stop)

    def add_device(self, index, pool=None, name=None, snapshot=None):
        path = os.path.join(self.sysfs_dir, str(index))
        os.mkdir(path)
        for attr, value in (('pool', pool), ('name', name),
                ('current_snap', snapshot)):
            if value is None:
                continue
            with open(os.path.join(path, attr), 'w') as attr_file:
                attr_file.write(value + '\n')
        return path


class TC_00_Registry(SysfsMixin, rbdstore.tests.StorageTestCase):
    def test_000_empty(self):
        self.assertEqual(list(mapping.mapped_devices()), [])

    def test_001_missing(self):
        self.assertEqual(list(mapping.mapped_devices(
            os.path.join(self.sysfs_dir, 'nonexistent'))), [])

    def test_002_devices(self):
        self.add_device(0, 'rbd', 'container_c1', '-')
        self.add_device(1, 'rbd', 'custom_c1.block', 'snap0')
        self.assertEqual(list(mapping.mapped_devices()), [
            MappedDevice(0, 'rbd', 'container_c1', '-'),
            MappedDevice(1, 'rbd', 'custom_c1.block', 'snap0'),
        ])

    def test_003_skip_garbage(self):
        self.add_device(0, 'rbd', 'container_c1', '-')
        # no pool attribute
        self.add_device(1, name='container_c2')
        # no name attribute
        self.add_device(2, pool='rbd')
        os.mkdir(os.path.join(self.sysfs_dir, 'power'))
        with open(os.path.join(self.sysfs_dir, '3'), 'w'):
            pass
        self.assertEqual(list(mapping.mapped_devices()), [
            MappedDevice(0, 'rbd', 'container_c1', '-'),
        ])

    def test_004_no_current_snap(self):
        self.add_device(5, 'rbd', 'container_c1')
        self.assertEqual(list(mapping.mapped_devices()), [
            MappedDevice(5, 'rbd', 'container_c1', None),
        ])

    def test_010_device_path(self):
        self.assertEqual(mapping.device_path(3), '/dev/rbd3')


class TC_10_Match(rbdstore.tests.StorageTestCase):
    devices = [
        MappedDevice(0, 'other', 'container_c1', '-'),
        MappedDevice(1, 'rbd', 'container_c1', 'snap0'),
        MappedDevice(2, 'rbd', 'container_c1', '-'),
        MappedDevice(3, 'rbd', 'container_c1', ''),
        MappedDevice(4, 'rbd', 'custom_d1', 'snap0'),
    ]

    def test_000_live(self):
        dev = mapping.find_device(self.devices, 'rbd', 'container_c1')
        self.assertEqual(dev.index, 2)

    def test_001_snapshot(self):
        dev = mapping.find_device(self.devices, 'rbd', 'container_c1@snap0')
        self.assertEqual(dev.index, 1)

    def test_002_pool_must_match(self):
        dev = mapping.find_device(self.devices, 'other', 'container_c1')
        self.assertEqual(dev.index, 0)
        self.assertIsNone(
            mapping.find_device(self.devices, 'third', 'container_c1'))

    def test_003_snapshot_does_not_match_live(self):
        self.assertIsNone(
            mapping.find_device(self.devices, 'rbd', 'custom_d1'))
        self.assertIsNone(
            mapping.find_device(self.devices, 'rbd', 'container_c1@snap1'))

    def test_004_empty_current_snap(self):
        devices = [MappedDevice(7, 'rbd', 'custom_d1', '')]
        self.assertEqual(
            mapping.find_device(devices, 'rbd', 'custom_d1').index, 7)

    def test_005_no_devices(self):
        self.assertIsNone(mapping.find_device([], 'rbd', 'custom_d1'))
