"""
Constants for the Cooperative Lot Traceability service.

This module defines system-wide constants including:
- Application metadata
- Numeric precision and rounding policy for weights and costs
- Code formats for batches and lots
- Source eligibility and public display rules
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Cooperative Lot Traceability"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "coop_trace.db"

DEFAULT_COOPERATIVE_NAME = "Koperasi Simultan"

# ============================================================================
# Precision Policy
# ============================================================================

# Weights are stored in kilograms with gram precision
WEIGHT_PRECISION = Decimal("0.001")

# Money totals (purchase amounts, batch input cost)
MONEY_PRECISION = Decimal("0.01")

# Per-kg costs are computed in full precision and quantized once on persist
UNIT_COST_PRECISION = Decimal("0.0001")

# Suggested sale prices are whole currency units
PRICE_PRECISION = Decimal("1")

ROUNDING = ROUND_HALF_UP

# Default markup applied to a lot's unit cost when suggesting a sale price
DEFAULT_SALE_MARGIN = Decimal("0.25")

# ============================================================================
# Code Formats
# ============================================================================

BATCH_CODE_PREFIX = "Batch"
LOT_CODE_PREFIX = "LOT"
CODE_SEQUENCE_WIDTH = 3

ROMAN_MONTHS: List[str] = [
    "I",
    "II",
    "III",
    "IV",
    "V",
    "VI",
    "VII",
    "VIII",
    "IX",
    "X",
    "XI",
    "XII",
]

MAX_LOT_CODE_LENGTH = 64
MAX_BATCH_CODE_LENGTH = 64
MAX_NOTES_LENGTH = 2000

# ============================================================================
# Source and Display Rules
# ============================================================================

# Purchase transactions must be completed before they can feed a batch
PURCHASE_STATUS_COMPLETED = "completed"

# Shown on the public trace page when a farmer has no group
DEFAULT_FARMER_GROUP = "Umum"

# Grade label used when contributing batches disagree
MIXED_GRADE = "Mixed"
