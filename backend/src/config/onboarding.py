"""
Onboarding and provisioning configuration.

All values are read from the environment at import time with safe defaults.
"""

import os

# Invitation codes
INVITATION_CODE_LENGTH = int(os.getenv("INVITATION_CODE_LENGTH", "6"))

# Unambiguous alphabet (no 0/O, 1/I/L) for codes read aloud or typed by hand
INVITATION_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

# Collision retries when issuing a new code
INVITATION_CODE_MAX_ISSUE_ATTEMPTS = 5

# Organization constraints
COMPANY_NAME_MAX_LENGTH = 100

# Database timeouts
DB_POOL_TIMEOUT_SECONDS = float(os.getenv("DB_POOL_TIMEOUT_SECONDS", "10"))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))

# Identity directory
IDENTITY_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "5"))

# Metadata reconciliation
METADATA_SYNC_MAX_ATTEMPTS = int(os.getenv("METADATA_SYNC_MAX_ATTEMPTS", "10"))
METADATA_SYNC_BATCH_SIZE = int(os.getenv("METADATA_SYNC_BATCH_SIZE", "100"))
METADATA_SYNC_DRY_RUN = os.getenv("METADATA_SYNC_DRY_RUN", "false").lower() == "true"

# Maximum stored length of a sync error message
MAX_SYNC_ERROR_LENGTH = 500
