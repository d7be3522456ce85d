import discord
from discord.ext import commands

COMMANDS_COG_PATH = 'points_derby.bot.commands'

class DerbyBotManager(commands.Bot):
    """Custom Bot class hosting the points derby commands."""

    def __init__(self, command_prefix, intents, guild_id):
        super().__init__(command_prefix=command_prefix, intents=intents)
        self.guild_id = guild_id # Store guild ID for syncing commands

    async def setup_hook(self):
        """Loads the derby cog and syncs its slash commands to the guild."""
        print("Running setup_hook...")
        try:
            await self.load_extension(COMMANDS_COG_PATH)
            print(f"Successfully loaded cog: {COMMANDS_COG_PATH}")
        except Exception as e:
            print(f"Failed to load cog {COMMANDS_COG_PATH}: {e}")
            raise

        guild = discord.Object(id=self.guild_id)
        self.tree.copy_global_to(guild=guild)
        try:
            synced = await self.tree.sync(guild=guild)
            print(f"Synced {len(synced)} commands to guild {self.guild_id}")
        except discord.HTTPException as e:
            print(f"Failed to sync commands to guild {self.guild_id}: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        print(f'Logged in as {self.user.name} ({self.user.id})')
        print('------')
