"""Hybrid recommendation module.

This module contains the interaction store, the offline factorization job and
its published snapshot, embedding lookups, the four scoring signals and the
diversity re-ranker that together produce ranked recommendations.
"""
