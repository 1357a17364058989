"""
GroupGuard — Membership Moderation & Live Occupancy for Shared Communities
===========================================================================
Screens join requests and existing members against configurable rules,
keeps an auditable interception log, and maintains a live, continuously
reconciled picture of who occupies the current shared session.

Package layout::

    groupguard/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Trust ladder, markers, default capacities
    ├── errors.py          # ConfigurationError, UpstreamFetchError
    ├── runtime.py         # Wires every service together
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Rules, interception archive, admin log, settings
    ├── engine/
    │   ├── rules.py       # Rule / RuleSet tagged union + config parsing
    │   ├── matching.py    # Whole-word, acronym and partial keyword matching
    │   ├── evaluator.py   # Candidate → Decision (pure)
    │   ├── events.py      # PresenceEvent variants + wire parsing
    │   ├── history.py     # Bounded, per-second occupancy samples
    │   ├── session.py     # Current instance / world / group context
    │   └── occupancy.py   # Event-sourced occupancy reducer
    ├── services/
    │   ├── interception_log.py  # Bounded newest-first decision log
    │   ├── rule_store.py        # Audited rule CRUD + RuleSet snapshots
    │   ├── directory_client.py  # httpx adapter for the remote directory
    │   ├── gatekeeper.py        # Live join-request handling
    │   ├── scan_service.py      # Cancellable retroactive member scans
    │   ├── event_pump.py        # Single ordered queue feeding the tracker
    │   ├── enrichment_service.py # Profile lookups → EntityUpdated events
    │   ├── snapshot_store.py    # Tracker state persistence
    │   ├── audit_service.py     # Long-term interception archive
    │   ├── embeds.py            # Discord embed builders
    │   └── alert_service.py     # Webhook alerts on rejections
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT admin guard + runtime injection
        └── routes/        # Moderation, occupancy and rule endpoints
"""

__version__ = "0.1.0"
