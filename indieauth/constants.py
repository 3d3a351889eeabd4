from __future__ import annotations

import logging

LOGGER = logging.getLogger("indieauth")
APP_VERSION = "0.1.0"
USER_AGENT = f"indieauth-relme/{APP_VERSION}"
MAX_DISCOVERY_REDIRECTS = 5
