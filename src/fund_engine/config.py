"""
Configuration management for the Fund Performance Engine.

This module centralizes all configuration settings including the database
connection used by the storage adapters, solver parameters, allocation
precision and report validation tolerances.
"""

import logging
import os


# ==============================================================================
# DATABASE CONFIGURATION
# ==============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///fund_engine.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"


# ==============================================================================
# COMPUTATION CONFIGURATION
# ==============================================================================

# IRR Calculation Parameters
IRR_MAX_ITERATIONS = 100
IRR_TOLERANCE = 1e-4
IRR_INITIAL_GUESS = 0.1
IRR_DERIVATIVE_EPSILON = 1e-10
IRR_MIN_RATE = -0.99
IRR_MAX_RATE = 10.0

# Solver vs. reference XIRR disagreement (percentage points) that triggers review
IRR_REVIEW_TOLERANCE = float(os.getenv("IRR_REVIEW_TOLERANCE", "0.5"))

# Day count used for year fractions everywhere in the engine
DAYS_PER_YEAR = 365.25


# ==============================================================================
# ALLOCATION CONFIGURATION
# ==============================================================================

# Allocations are stored in cents
ALLOCATION_DECIMALS = 2

# Sum of allocations vs. the call/distribution total (currency units)
CONSERVATION_TOLERANCE = 1.0

# Sum of ownership percentages vs. 100 (percentage points)
OWNERSHIP_TOLERANCE = 0.01

# Window used when listing upcoming distributions
UPCOMING_DISTRIBUTION_DAYS = int(os.getenv("UPCOMING_DISTRIBUTION_DAYS", "30"))


# ==============================================================================
# METHODOLOGY CONFIGURATION
# ==============================================================================

DEFAULT_MANAGEMENT_FEE_PERCENT = float(os.getenv("DEFAULT_MANAGEMENT_FEE_PERCENT", "2.0"))

# Granular split must reconcile to total calls within this many currency units
GRANULAR_SPLIT_TOLERANCE = 1.0


# ==============================================================================
# VALIDATION CONFIGURATION
# ==============================================================================

VALIDATION_AMOUNT_TOLERANCE = float(os.getenv("VALIDATION_AMOUNT_TOLERANCE", "1000"))
VALIDATION_IRR_TOLERANCE = float(os.getenv("VALIDATION_IRR_TOLERANCE", "0.1"))


# ==============================================================================
# LOGGING CONFIGURATION
# ==============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = None) -> None:
    """Apply LOG_LEVEL / LOG_FORMAT to the root logger."""
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
