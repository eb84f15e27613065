"""
Money Map Engine - Source Package

The engine behind a shared household budget: recurring obligations,
the family savings goal, and spending alerts.

DESIGN PRINCIPLES:
1. A period is materialized exactly once, no matter how many sessions run
2. One active savings goal per family, always
3. An alert condition is raised once per session
4. Every failure degrades to "try again on the next pass"
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Money Map Team"
