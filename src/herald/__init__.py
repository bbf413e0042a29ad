"""Herald — BitCraft region events relayed to chat.

Watches a region's change feed for chat messages and moderation actions,
resolves entity ids to names, and posts readable notifications to a
chat webhook.
"""

__version__ = "0.1.0"
