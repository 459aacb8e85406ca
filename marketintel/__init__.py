"""MarketIntel: marketplace intelligence for a storefront.

This package provides the two decision services a storefront calls
synchronously: a dynamic pricing optimizer driven by tabular Q-learning and a
hybrid recommendation engine combining collaborative, content, popularity and
business signals.

Modules:
    pricing: Pricing state building, Q-learning optimizer, constraints, reward
    recommender: Interaction store, factor model, scoring, diversity re-ranking
    experiment: Deterministic A/B assignment shared by both engines
    service: Facade wiring providers, stores and engines together
"""

__version__ = "0.1.0"
