"""
Laurel — Reward & Engagement Progress Engine
=============================================
Turns user actions (posts, event RSVPs, donations, job posts, mentorship
sessions, community joins, profile completion) into tracked task progress,
points, tier standing, badges and redeemable rewards.

Package layout::

    laurel/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Exception taxonomy
    ├── __main__.py        # python -m laurel (init-db, seed, tier-info, summary)
    ├── database/
    │   ├── engine.py      # Engine, session, ON CONFLICT insert, compare-and-set
    │   └── models.py      # Templates, tasks, activities, history, ledger, badges
    ├── engine/
    │   ├── tiers.py       # Tier calculator
    │   ├── transitions.py # Status / verification transition tables
    │   ├── badges.py      # Badge reference normalization
    │   └── matching.py    # Domain event → task heuristics
    ├── services/
    │   ├── progress_service.py      # Task progress tracker
    │   ├── points_service.py        # Points ledger, reconciliation, badge set
    │   ├── verification_service.py  # Staff approval gate
    │   ├── redemption_service.py    # Claim handler
    │   ├── integration_service.py   # Integration triggers
    │   ├── template_service.py      # Reward template store
    │   ├── badge_bridge.py          # Badge evaluator delegation
    │   ├── notifications.py         # Notifier boundary + templates
    │   ├── dispatch.py              # Fire-and-forget side-effect queue
    │   ├── hooks.py                 # Side-effect wiring
    │   └── seed.py                  # Default reward catalogue
    └── seeds/
        └── rewards.yaml
"""

__version__ = "0.1.0"
