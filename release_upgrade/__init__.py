"""In-place operating system upgrade from a release disk image.

The upgrade runs as an ordered list of numbered steps that can be resumed
from any index after a failure.
"""

from .__version__ import __version__

__all__ = ["__version__"]
