"""Route prefixes shared by ``main`` and the test-suite."""

# Base API prefix (all HTTP routes are served under /api/*)
API_PREFIX = "/api"

# Router prefixes (relative to API_PREFIX)
ENTITIES_PREFIX = "/entities"
ENTITY_RECORDS_PREFIX = "/entity-records"
SYSTEM_PREFIX = "/system"
