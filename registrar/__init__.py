"""
Registrar: institutional records with consistent enrollment, fee and marks ledgers.

Course capacity, fee obligations with partial payments, and exam marks with a
publish workflow are kept consistent under concurrent updates. Each aggregate
is the unit of mutual exclusion; operations on different aggregates never
contend.
"""

__version__ = "1.0.0"
__author__ = "Registrar Development Team"
__description__ = "Consistent enrollment, fee and marks ledgers"
