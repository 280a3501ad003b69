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

'''rbdstore logging routines

Pool drivers log through per-pool loggers, children of the ``pool`` logger,
so that messages of one pool can be filtered or routed by the caller.

See also: :py:attr:`rbdstore.storage.Pool.log`
'''

import logging


def get_pool_logger(poolname):
    '''Initialise logging for particular storage pool

    :param str poolname: pool's name
    :rtype: :py:class:`logging.Logger`
    '''

    return logging.getLogger('pool.' + poolname)
