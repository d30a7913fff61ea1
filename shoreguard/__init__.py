"""ShoreGuard Discord Moderation Bot.

A Discord moderation bot that scans messages for banned words, watches the audit log for unauthorized channel, role and ban actions, and records violations in a flat JSON file that administrators manage through slash commands.

"""

__version__ = '1.0.0'
