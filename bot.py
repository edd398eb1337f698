#    Echoguard - a repeated-message guard for Discord communities
#    © 2024-2026  Iza Carlos (Aka Carlos E.)
#    Licensed under the GNU Affero General Public License v3.0

import discord
from discord.ext import commands
import os
import sys
import signal
import asyncio
import time
import contextlib
from config import shared_config
from utils.logger import get_logger
from utils.permissions import check_bot_permissions, format_missing_permissions

log = get_logger()

# Extension folders, loaded in order (commands look up the SpamGuard cog)
EXTENSION_FOLDERS = ("moderation", "commands")

class Echoguard(commands.AutoShardedBot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True # Required to compare message text

        super().__init__(
            command_prefix="eg!", # Fallback, we mainly use slash commands
            intents=intents,
            help_command=None,
            shard_count=shared_config.SHARD_COUNT if shared_config.SHARD_COUNT > 1 else None
        )
        self.start_time = time.time()
        self._ready_once = asyncio.Event()

    async def setup_hook(self):
        """
        Async setup hook to load extensions and sync slash commands.
        """
        for folder in EXTENSION_FOLDERS:
            await self._load_extensions_from(folder)

        try:
            synced = await self.tree.sync()
            log.discord(f"Synced {len(synced)} command(s) globally.")
        except Exception as e:
            log.error("Failed to sync commands", exc_info=e)

    async def _load_extensions_from(self, folder: str):
        if not os.path.isdir(folder):
            log.warning(f"Extension folder '{folder}' not found, skipping.")
            return

        failed_extensions = []
        for filename in sorted(os.listdir(folder)):
            if filename.endswith(".py") and not filename.startswith("__"):
                extension_name = f"{folder}.{filename[:-3]}"
                try:
                    await self.load_extension(extension_name)
                    log.info(f"Loaded extension: {extension_name}")
                except Exception as e:
                    failed_extensions.append(extension_name)
                    log.error(f"Failed to load extension {extension_name}", exc_info=e)

        if failed_extensions:
            log.error(f"Failed to load extensions: {failed_extensions}")
        else:
            log.discord(f"All '{folder}' extensions loaded successfully.")

    async def on_ready(self):
        # Only run once, even though each shard calls on_ready
        if not self._ready_once.is_set():
            total_shards = self.shard_count or 1
            log.network(f"Bot is online as {self.user} (ID: {self.user.id})")
            log.network(f"Connected to {len(self.guilds)} guilds across {total_shards} shard(s).")
            log.network(f"Environment: {shared_config.ENVIRONMENT.value}.")

            for guild in self.guilds:
                missing = check_bot_permissions(guild)
                if missing:
                    log.warning(f"Guild {guild.name} ({guild.id}) is missing permissions:\n{format_missing_permissions(missing)}")

            await self.change_presence(activity=discord.Activity(
                type=discord.ActivityType.watching,
                name=f"for repeated messages in {len(self.guilds)} guilds"
            ))

            self._ready_once.set()
        else:
            log.network(f"Session resumed {time.time() - self.start_time:.2f} seconds after start.")

    async def on_error(self, event_method: str, *args, **kwargs):
        # Drop the failing event, keep the gateway alive
        log.error(f"Unhandled error in event '{event_method}'", exc_info=sys.exc_info())

    async def on_shard_connect(self, shard_id):
        log.network(f"[Shard {shard_id}] connected successfully in {time.time() - self.start_time:.2f} seconds.")

    async def on_shard_ready(self, shard_id):
        guilds = [g for g in self.guilds if g.shard_id == shard_id]
        log.network(f"[Shard {shard_id}] ready - handling {len(guilds)} guild(s).")

    async def on_shard_disconnect(self, shard_id):
        log.network(f"[Shard {shard_id}] disconnected - attempting to reconnect...")

    async def on_shard_resumed(self, shard_id):
        log.network(f"[Shard {shard_id}] reconnected successfully.")

async def graceful_shutdown(bot: Echoguard):
    log.info("Shutdown signal received - performing cleanup...")

    # Unloading cogs cancels pending expiry timers
    for name in list(bot.extensions):
        with contextlib.suppress(Exception):
            await bot.unload_extension(name)

    with contextlib.suppress(Exception):
        await bot.close()

    log.info("Shutdown complete. Echoguard signing off.")

async def main() -> int:
    bot = Echoguard()

    async with bot:
        shutdown_signal = asyncio.get_running_loop().create_future()

        def _signal_handler():
            if not shutdown_signal.done():
                shutdown_signal.set_result(True)

        loop = asyncio.get_running_loop()
        # Windows relies on KeyboardInterrupt instead
        if sys.platform != 'win32':
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, _signal_handler)
                except Exception as e:
                    log.error(f"Failed to register signal handler for {sig!r}: {e}")

        bot_task = asyncio.create_task(bot.start(shared_config.DISCORD_TOKEN))

        exit_code = 0
        try:
            done, _ = await asyncio.wait({bot_task, shutdown_signal}, return_when=asyncio.FIRST_COMPLETED)
            if bot_task in done and bot_task.exception() is not None:
                raise bot_task.exception()
        except discord.LoginFailure as e:
            log.error("Failed to login", exc_info=e)
            exit_code = 1
        except asyncio.CancelledError:
            log.info("Main task cancelled; initiating cleanup.")
        finally:
            if not bot_task.done():
                bot_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await bot_task

            try:
                await graceful_shutdown(bot)
            except Exception as e:
                log.error(f"Error during graceful shutdown: {e}", exc_info=e)
                exit_code = 1

        return exit_code

if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        log.error("Fatal crash in main", exc_info=e)
        sys.exit(1)
