"""Dynamic pricing for listed products.

This package builds a point-in-time pricing state, selects a discrete price
adjustment with an epsilon-greedy Q-learning agent, clamps the proposal
against hard, daily, competitive and fairness rules, and feeds a weighted
reward back into the agent's Q-table.
"""
