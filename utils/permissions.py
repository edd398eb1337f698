# Permission Requirements for Anti-Spam Actions
# Maps each action to the Discord permissions it requires to function properly

import discord
from typing import Dict, List

# Action -> List of required permission names (as they appear in discord.Permissions)
ACTION_PERMISSIONS: Dict[str, List[str]] = {
    "Timeout": ["moderate_members"],
    "Purge": ["view_channel", "read_message_history", "manage_messages"],
    "Notify": ["send_messages", "embed_links"],
}

# Human-readable permission names for display
PERMISSION_DISPLAY_NAMES: Dict[str, str] = {
    "view_channel": "View Channels",
    "read_message_history": "Read Message History",
    "manage_messages": "Manage Messages",
    "moderate_members": "Timeout Members",
    "send_messages": "Send Messages",
    "embed_links": "Embed Links",
}

def check_bot_permissions(guild: discord.Guild) -> Dict[str, List[str]]:
    """
    Check which actions have missing guild-level permissions.

    Returns:
        Dict mapping action names to list of missing permission names.
        Only includes actions that have missing permissions.
    """
    bot_perms = guild.me.guild_permissions
    missing: Dict[str, List[str]] = {}

    for action, required_perms in ACTION_PERMISSIONS.items():
        action_missing = [p for p in required_perms if not getattr(bot_perms, p, False)]
        if action_missing:
            missing[action] = action_missing

    return missing

def format_missing_permissions(missing: Dict[str, List[str]]) -> str:
    """
    Format missing permissions for user display.

    Returns a formatted string like:
    • Timeout: Timeout Members
    • Purge: Manage Messages
    """
    lines = []
    for action, perms in missing.items():
        perm_names = [PERMISSION_DISPLAY_NAMES.get(p, p) for p in perms]
        lines.append(f"• **{action}**: {', '.join(perm_names)}")
    return "\n".join(lines)

def can_timeout(member: discord.Member) -> bool:
    """Whether the bot is allowed to time this member out (role hierarchy included)."""
    guild = member.guild
    me = guild.me
    if member.id == guild.owner_id or member.id == me.id:
        return False
    if not me.guild_permissions.moderate_members:
        return False
    return member.top_role < me.top_role

def can_notify(channel: discord.abc.GuildChannel) -> bool:
    perms = channel.permissions_for(channel.guild.me)
    return perms.send_messages
