"""
Lead Auction Engine - Configuration
Environment-driven settings for the auction window, retries and API keys
"""
import os

# Auction window: a lead stays open for bids this long after submission
AUCTION_WINDOW_HOURS = int(os.getenv("AUCTION_WINDOW_HOURS", "48"))

# Offers stay valid for this many days after submission
OFFER_VALIDITY_DAYS = int(os.getenv("OFFER_VALIDITY_DAYS", "30"))

# Admin deadline extensions (hours)
MIN_DEADLINE_EXTENSION_HOURS = 1
MAX_DEADLINE_EXTENSION_HOURS = int(os.getenv("MAX_DEADLINE_EXTENSION_HOURS", "168"))

# Storage retries for transient failures
TRANSIENT_RETRY_ATTEMPTS = int(os.getenv("TRANSIENT_RETRY_ATTEMPTS", "3"))
TRANSIENT_RETRY_BACKOFF_MS = int(os.getenv("TRANSIENT_RETRY_BACKOFF_MS", "50"))

# Identity collaborator tokens
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "lead-auction-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_HOURS = 24

# Scheduler endpoints
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")
