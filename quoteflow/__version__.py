"""Version information for quoteflow."""

import os

__version__ = "0.3.0"
__version_info__ = tuple(int(i) for i in __version__.split(".") if i.isdigit())

# Stamped into the container image by the release pipeline.
__build_date__ = os.getenv("QUOTEFLOW_BUILD_DATE") or None
__commit_sha__ = os.getenv("QUOTEFLOW_COMMIT_SHA") or None
