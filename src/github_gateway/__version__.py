"""Version information for the GitHub gateway.

Single source of truth for version number.
Follows PEP 440 and semantic versioning principles.
"""

__version__ = "1.2.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

# Version history:
# 1.2.0 - Inbound rate limiter headers, webhook dispatcher, status endpoint
# 1.1.0 - Cursor pagination via Link header, fail-closed webhook verification
# 1.0.0 - Initial release
