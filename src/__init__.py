"""
Pattern Pilot

Watches repeated browsing actions and replays them as automations:
- Sequence similarity and confidence scoring
- Background recognition sweeps and mid-workflow suggestions
- Deterministic and oracle-guided replay with cancellation
- Manual recording sessions
"""

__version__ = "0.1.0"
