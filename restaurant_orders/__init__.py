"""
                Restaurant Orders

Order intake and payment reconciliation backend: orders are persisted
transactionally with immutable line-item snapshots, and their status
follows the outcome reported by Stripe.
"""

__version__ = "1.0.0"
