import os
import sys

import discord
from dotenv import load_dotenv

from points_derby.bot.manager import DerbyBotManager

# Load environment variables from .env file
load_dotenv()
DISCORD_BOT_TOKEN = os.getenv('DISCORD_BOT_TOKEN')
GUILD_ID = os.getenv('DISCORD_GUILD_ID')  # Server ID the slash commands are synced to


def run_bot():
    """Initializes and runs the Discord bot."""
    if not DISCORD_BOT_TOKEN or not GUILD_ID:
        print("FATAL ERROR: DISCORD_BOT_TOKEN or DISCORD_GUILD_ID not found in .env file.")
        sys.exit(1)

    intents = discord.Intents.default()
    bot = DerbyBotManager(command_prefix="!", intents=intents, guild_id=int(GUILD_ID))

    try:
        print("Starting Discord bot...")
        bot.run(DISCORD_BOT_TOKEN)
    except discord.LoginFailure as e:
        print(f"Error running bot: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run_bot()
