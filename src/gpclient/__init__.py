"""GlobalProtect client - session establishment core.

Portal/gateway authentication and tunnel connection lifecycle.
"""

from .constants import VERSION

__version__ = VERSION
