"""
Lift-Off XP Configuration
Adjust these values to change how XP, levels, streaks and wagers behave
"""

import os

# ============================================================================
# Level Curve
# ============================================================================

# Cost of completing a level: round(LEVEL_XP_BASE * level ^ LEVEL_XP_EXPONENT)
# Level 1 → 2: 100 XP
# Level 2 → 3: 283 XP
# Level 3 → 4: 520 XP
# Level 4 → 5: 800 XP
# etc.

LEVEL_XP_BASE = 100
LEVEL_XP_EXPONENT = 1.5

# Hard cap, no curve is defined past this level
MAX_LEVEL = 100

# ============================================================================
# Workout XP
# ============================================================================

# PR lift: (weight / bodyweight) * PR_XP_FACTOR
PR_XP_FACTOR = 100

# Normal lift: (weight / bodyweight) * NORMAL_XP_FACTOR * reps * sets
NORMAL_XP_FACTOR = 10

# ============================================================================
# Streaks
# ============================================================================

# Day 1 = 1.0x, day 2 = 1.1x, day 3 = 1.2x ... capped at 2.0x from day 11
STREAK_STEP = 0.1
STREAK_MULTIPLIER_CAP = 2.0

# ============================================================================
# Lift-Off Challenges
# ============================================================================

# Challenges not completed within this window are expired on next read
CHALLENGE_EXPIRY_DAYS = int(os.getenv("CHALLENGE_EXPIRY_DAYS", "7"))

# What happens when both lifts are equal:
#   "draw" → challenge completes with no winner, no XP moves
TIE_POLICY = "draw"

# ============================================================================
# Logging
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
