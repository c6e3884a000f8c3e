"""Application-wide constants for the consultation booking engine."""

from __future__ import annotations

BRAND_NAME = "ConsultBook"

# Booking reason texts surfaced to participants
HOLD_TAKEN_CANCELLATION_REASON = "slot expired and taken"

# Gateway reference formats
SSLCOMMERZ_REFERENCE_SEPARATOR = "_"
CASH_TRANSACTION_PREFIX = "CASH"
REFUND_TRANSACTION_PREFIX = "REFUND"

# Text constraints
MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 2000
MAX_DISPUTE_DESCRIPTION_LENGTH = 5000

# Query limits
DEFAULT_QUERY_LIMIT = 100

# API metadata
API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = "Consultation booking lifecycle and payment reconciliation"
API_VERSION = "1.0.0"
