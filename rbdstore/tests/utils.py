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
import unittest.mock

import rbdstore.exc
import rbdstore.log
import rbdstore.tests
import rbdstore.utils


class TC_00_Size(rbdstore.tests.StorageTestCase):
    def test_000_plain_number(self):
        self.assertEqual(rbdstore.utils.parse_size('1024'), 1024)
        self.assertEqual(rbdstore.utils.parse_size(' 42 '), 42)

    def test_001_units(self):
        self.assertEqual(rbdstore.utils.parse_size('10K'), 10 * 1000)
        self.assertEqual(rbdstore.utils.parse_size('10KiB'), 10 * 1024)
        self.assertEqual(rbdstore.utils.parse_size('2 MiB'), 2 * 1024 ** 2)
        self.assertEqual(rbdstore.utils.parse_size('3GB'), 3 * 1000 ** 3)
        self.assertEqual(rbdstore.utils.parse_size('1Ti'), 1024 ** 4)
        self.assertEqual(rbdstore.utils.parse_size('512B'), 512)

    def test_002_case_insensitive(self):
        self.assertEqual(rbdstore.utils.parse_size('1gib'), 1024 ** 3)

    def test_003_invalid(self):
        for size in ('', 'abc', '1.5G', 'G', '10 XB'):
            with self.subTest(size=size):
                with self.assertRaises(rbdstore.exc.StorageValueError):
                    rbdstore.utils.parse_size(size)


class TC_10_Retry(rbdstore.tests.StorageTestCase):
    def setUp(self):
        super().setUp()
        self.calls = 0
        patcher = unittest.mock.patch('asyncio.sleep')
        self.sleep_mock = patcher.start()
        self.sleep_mock.side_effect = self._fake_sleep
        self.addCleanup(patcher.stop)

    async def _fake_sleep(self, delay):
        pass

    def _failing(self, failures):
        async def kallable():
            self.calls += 1
            if self.calls <= failures:
                raise rbdstore.exc.StoragePoolException('busy')
            return 'done'
        return kallable

    def test_000_success_first(self):
        result = self.loop.run_until_complete(rbdstore.utils.retry_async(
            self._failing(0), rbdstore.exc.StoragePoolException, 10, 1))
        self.assertEqual(result, 'done')
        self.assertEqual(self.calls, 1)
        self.sleep_mock.assert_not_called()

    def test_001_success_after_failures(self):
        result = self.loop.run_until_complete(rbdstore.utils.retry_async(
            self._failing(9), rbdstore.exc.StoragePoolException, 10, 1))
        self.assertEqual(result, 'done')
        self.assertEqual(self.calls, 10)
        self.assertEqual(self.sleep_mock.call_count, 9)
        self.sleep_mock.assert_called_with(1)

    def test_002_too_many_failures(self):
        with self.assertRaises(rbdstore.exc.StoragePoolException):
            self.loop.run_until_complete(rbdstore.utils.retry_async(
                self._failing(10), rbdstore.exc.StoragePoolException, 10, 1))
        self.assertEqual(self.calls, 10)

    def test_003_other_exception(self):
        async def kallable():
            self.calls += 1
            raise ValueError()
        with self.assertRaises(ValueError):
            self.loop.run_until_complete(rbdstore.utils.retry_async(
                kallable, rbdstore.exc.StoragePoolException, 10, 1))
        self.assertEqual(self.calls, 1)


class TC_20_Misc(rbdstore.tests.StorageTestCase):
    def test_000_sanitize_stderr(self):
        self.assertEqual(
            rbdstore.utils.sanitize_stderr_for_log(b'rbd: error\n\x1b[0m'),
            'rbd: error__[0m')

    def test_001_sanitize_stderr_limit(self):
        self.assertEqual(
            len(rbdstore.utils.sanitize_stderr_for_log(b'x' * 10000)), 4096)

    def test_010_enoent_is_spe(self):
        with self.assertRaises(rbdstore.exc.StoragePoolException) as e:
            with rbdstore.utils.enoent_is_spe('rbd'):
                raise FileNotFoundError('rbd')
        self.assertIn('rbd', str(e.exception))

    def test_011_enoent_is_spe_other(self):
        with self.assertRaises(PermissionError):
            with rbdstore.utils.enoent_is_spe('rbd'):
                raise PermissionError('rbd')

    def test_020_subprocess_env(self):
        with unittest.mock.patch.dict(os.environ,
                {'LC_ALL': 'pl_PL.UTF-8', 'HOME': '/root'}):
            env = rbdstore.utils.subprocess_env()
        # the locale is forced
        self.assertEqual(env['LC_ALL'], 'C.UTF-8')
        self.assertEqual(env['HOME'], '/root')
        with unittest.mock.patch.dict(os.environ, clear=True):
            env = rbdstore.utils.subprocess_env()
        self.assertEqual(env, {'LC_ALL': 'C.UTF-8'})

    def test_030_get_entry_point_one_missing(self):
        with unittest.mock.patch('importlib.metadata.entry_points',
                return_value=[]):
            with self.assertRaises(KeyError):
                rbdstore.utils.get_entry_point_one('rbdstore.storage', 'nope')

    def test_031_get_entry_point_one(self):
        ep = unittest.mock.Mock()
        ep.load.return_value = 'driver'
        with unittest.mock.patch('importlib.metadata.entry_points',
                return_value=[ep]) as mock_ep:
            self.assertEqual(
                rbdstore.utils.get_entry_point_one('rbdstore.storage', 'rbd'),
                'driver')
        mock_ep.assert_called_once_with(group='rbdstore.storage', name='rbd')


class TC_30_Log(rbdstore.tests.StorageTestCase):
    def test_000_pool_logger(self):
        log = rbdstore.log.get_pool_logger('ceph')
        self.assertEqual(log.name, 'pool.ceph')
        self.assertIs(log, rbdstore.log.get_pool_logger('ceph'))
        with self.assertLogs('pool', 'WARNING'):
            log.warning('pool message')
