"""
Resonance — Voice Engagement, Leveling & Room Moderation for Discord
=====================================================================
Turns voice presence and chat activity into session records, time totals
and a persistent XP/level score per guild member, and keeps per-room
moderation state (mutes and bans inside member-owned voice rooms).

Package layout::

    resonance/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Duration formatting, rank badges
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, async bridge, conflict retry
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── timekeeping.py # TimeAccount + UTC helpers
    │   ├── presence.py    # Voice transition classification
    │   ├── curve.py       # XP ↔ level curve
    │   ├── xp.py          # XP gains, fractional carry, cooldowns
    │   ├── votes.py       # Vote-mute tally and threshold
    │   ├── buckets.py     # Day bucketing for activity charts
    │   ├── settings.py    # Immutable guild level settings + validation
    │   └── errors.py      # NotFoundError / InvalidInputError
    ├── services/
    │   ├── session_service.py     # Voice session state machine
    │   ├── leveling_service.py    # XP awards, admin XP tools
    │   ├── moderation_service.py  # Per-room mute/ban state
    │   ├── vote_mute_service.py   # Active vote-mute polls
    │   ├── stats_service.py       # Leaderboards, user stats, charts
    │   ├── settings_service.py    # Guild level settings (audited)
    │   ├── audit.py               # admin_log snapshots
    │   ├── room_service.py        # Room ownership registry
    │   ├── level_roles.py         # Level reward role grants
    │   ├── announcement_service.py # Level-up delivery
    │   └── embeds.py              # Discord embed builders
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/          # voice, social, meta, admin, rooms
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Read-only public endpoints
"""

__version__ = "0.1.0"
