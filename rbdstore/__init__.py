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

'''
rbdstore

Storage pool driver keeping container, VM, image and custom volumes on
Ceph RBD. The driver does not own a volume database: everything it knows
about volumes, snapshots and clones is read back from the backend names.
'''

__license__ = 'LGPLv2.1 or later'
__version__ = '0.3.0'
