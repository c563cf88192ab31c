"""Application-wide constants for the coaching marketplace payments backend."""

from __future__ import annotations

BRAND_NAME = "CoachMarket"

# Processor metadata tag identifying charges created by this platform
PLATFORM_METADATA_TAG = "coachmarket"

# Query limits
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 500

# API metadata
API_TITLE = f"{BRAND_NAME} Payments API"
API_DESCRIPTION = "Fee calculation, Stripe payment orchestration, webhook settlement and coach payouts"
API_VERSION = "1.0.0"
