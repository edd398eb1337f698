import discord
from discord import app_commands
from discord.ext import commands
from utils.embed_builder import EmbedBuilder, describe_window
from utils.logger import get_logger
from utils.permissions import check_bot_permissions, format_missing_permissions

log = get_logger()

class AntiSpamCommands(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    antispam_group = app_commands.Group(
        name="antispam",
        description="Inspect the repeated-message guard",
        guild_only=True,
        default_permissions=discord.Permissions(manage_messages=True)
    )

    def _guard(self):
        return self.bot.get_cog("SpamGuard")

    @antispam_group.command(name="status", description="Show anti-spam settings and tracked users")
    @app_commands.checks.has_permissions(manage_messages=True)
    async def status(self, interaction: discord.Interaction):
        guard = self._guard()
        if guard is None:
            await interaction.response.send_message(
                embed=EmbedBuilder.error("Not Loaded", "The anti-spam module is not running."),
                ephemeral=True
            )
            return

        roles = ", ".join(f"<@&{rid}>" for rid in sorted(guard.exempt_role_ids)) or "None"
        channel = f"<#{guard.notify_channel_id}>" if guard.notify_channel_id else "Not configured"

        embed = EmbedBuilder.info(
            title="Anti-Spam Status",
            description=f"Members repeating the same message {guard.tracker.threshold} times within "
                        f"the last {describe_window(guard.window)} are timed out and purged.",
            fields=[
                ("Tracked Users", str(guard.tracker.tracked_in(interaction.guild_id)), True),
                ("Report Channel", channel, True),
                ("Exempt Roles", roles, False)
            ]
        )

        missing = check_bot_permissions(interaction.guild)
        if missing:
            embed.add_field(name="⚠️ Missing Permissions", value=format_missing_permissions(missing), inline=False)

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @antispam_group.command(name="forget", description="Reset a member's repeated-message streak")
    @app_commands.describe(member="Member whose streak should be cleared")
    @app_commands.checks.has_permissions(manage_messages=True)
    async def forget(self, interaction: discord.Interaction, member: discord.Member):
        guard = self._guard()
        if guard is None:
            await interaction.response.send_message(
                embed=EmbedBuilder.error("Not Loaded", "The anti-spam module is not running."),
                ephemeral=True
            )
            return

        if guard.tracker.forget(interaction.guild_id, member.id):
            log.moderation(f"{interaction.user} cleared the spam streak of {member} ({member.id}).")
            embed = EmbedBuilder.success("Streak Cleared", f"{member.mention} is no longer being tracked.")
        else:
            embed = EmbedBuilder.info("Nothing To Clear", f"{member.mention} has no active streak.")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        if isinstance(error, app_commands.MissingPermissions):
            embed = EmbedBuilder.error("Permission Denied", "You need the Manage Messages permission to use this command.")
        else:
            log.error(f"App Command Error in {interaction.command.name if interaction.command else 'Unknown'}", exc_info=error)
            embed = EmbedBuilder.error("Command Error", "An unexpected error occurred.")

        if not interaction.response.is_done():
            await interaction.response.send_message(embed=embed, ephemeral=True)
        else:
            await interaction.followup.send(embed=embed, ephemeral=True)

async def setup(bot: commands.Bot):
    await bot.add_cog(AntiSpamCommands(bot))
