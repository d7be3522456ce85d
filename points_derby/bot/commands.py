import asyncio
import traceback
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from points_derby import minigames
from points_derby.auth import resolve_caller
from points_derby.bookie import Bookie
from points_derby.database import queries
from points_derby.database.store import BalanceStore
from points_derby.engine.data_models import CURVE_FAMILIES, CurveFamily, RacePhase
from points_derby.errors import DerbyError
from points_derby.race_service import RaceService, RaceStatus

# Public names for curve families; parameters stay hidden from players.
FAMILY_NAMES = {
    CurveFamily.CONSTANT: "Steady",
    CurveFamily.LINEAR: "Accelerator",
    CurveFamily.QUADRATIC: "Rocket",
    CurveFamily.LOGARITHMIC: "Fast Starter",
    CurveFamily.EXPONENTIAL: "Late Bloomer",
}


def format_points(value) -> str:
    if value is None:
        return "-"
    return f"{int(value):,} pts"


def format_delta(value) -> str:
    if value is None:
        return "-"
    return f"{int(value):+,} pts"


def error_embed(err: DerbyError) -> discord.Embed:
    title = "Try Again Later" if err.retryable else "Request Refused"
    embed = discord.Embed(title=title, description=err.message, color=discord.Color.red())
    embed.set_footer(text=f"Reason: {err.kind}")
    return embed


def build_status_embed(status: RaceStatus) -> discord.Embed:
    state = status.state
    embed = discord.Embed(
        title=f"Race {state.race_id}",
        description=f"Phase: **{status.phase.value}** | Pick: #{state.pick} | Bet: {format_points(state.bet)}",
        color=discord.Color.blurple(),
    )
    families = {entity.id: FAMILY_NAMES[entity.curve_family] for entity in state.entities}
    lines = []
    for position, (entity_id, distance) in enumerate(status.standings, start=1):
        marker = " <- your pick" if entity_id == state.pick else ""
        lines.append(f"{position}. #{entity_id} {families.get(entity_id, '?'):<13} {distance:7.2f}m{marker}")
    embed.add_field(name="Standings", value="```\n" + "\n".join(lines) + "\n```", inline=False)

    if status.phase is RacePhase.COUNTDOWN:
        embed.add_field(name="Starts In", value=f"{status.ms_until_start / 1000:.1f}s", inline=True)
    elif status.phase is RacePhase.RUNNING:
        embed.add_field(name="Ends In", value=f"{status.ms_until_end / 1000:.1f}s", inline=True)
    if state.applied_effects:
        embed.add_field(name="Items Used", value=str(len(state.applied_effects)), inline=True)
    if state.settled:
        embed.add_field(name="Winner", value=f"#{state.winner}", inline=True)
        embed.add_field(name="Result", value=format_delta(state.delta), inline=True)
    return embed


def build_odds_embed(family_odds: Dict[str, Dict[str, float]], simulations: int) -> discord.Embed:
    embed = discord.Embed(
        title="Derby Odds Board",
        description=f"How often each running style won across {simulations:,} simulated races.",
        color=discord.Color.gold(),
    )
    ranked = sorted(CURVE_FAMILIES, key=lambda family: -family_odds.get(family.value, {}).get("probability", 0.0))
    for family in ranked:
        entry = family_odds.get(family.value)
        if entry is None:
            continue
        embed.add_field(
            name=FAMILY_NAMES[family],
            value=f"Win rate {entry['probability']:.1%}\nOdds {entry['odds']:.2f}-1",
            inline=True,
        )
    return embed


def purge_expired_snapshots(store: BalanceStore) -> int:
    removed = store.purge_expired_races()
    if removed:
        print(f"  -> Purged {removed} expired race snapshots.")
    return removed


class DerbyCommands(commands.Cog):
    """Cog containing all commands for the points derby."""

    def __init__(self, bot: commands.Bot, service: Optional[RaceService] = None):
        self.bot = bot
        self.service = service or RaceService(queries.PostgresStore())
        self.purge_expired.start()

    def cog_unload(self):
        self.purge_expired.cancel()

    @tasks.loop(minutes=5)
    async def purge_expired(self):
        purge_expired_snapshots(self.service.store)

    async def _run(self, interaction: discord.Interaction, action):
        """
        Resolves the caller, registers them on first contact and runs ``action``.
        Returns None after replying with an error.
        """
        try:
            caller = resolve_caller(interaction)
            self.service.register_player(caller)
            return action(caller)
        except DerbyError as err:
            await interaction.followup.send(embed=error_embed(err), ephemeral=True)
        except Exception as err:
            print(f"Unexpected error handling /{interaction.command.name if interaction.command else '?'}: {err}")
            traceback.print_exc()
            await interaction.followup.send("Something went wrong. Please try again.", ephemeral=True)
        return None

    @app_commands.command(name="balance", description="Show your point balance.")
    async def balance(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True, thinking=True)
        points = await self._run(interaction, self.service.balance)
        if points is not None:
            await interaction.followup.send(f"You have **{format_points(points)}**.", ephemeral=True)

    @app_commands.command(name="race_start", description="Pick a horse and wager points on a new race.")
    @app_commands.describe(pick="Horse number to back.", bet="Points to wager.")
    async def race_start(self, interaction: discord.Interaction, pick: int, bet: int):
        await interaction.response.defer(ephemeral=True, thinking=True)
        ticket = await self._run(interaction, lambda caller: self.service.start_race(caller, pick, bet))
        if ticket is None:
            return
        state = ticket.state
        embed = discord.Embed(
            title="Race Created",
            description=f"Race ID: `{state.race_id}`\nYou backed **#{state.pick}** for {format_points(state.bet)}.",
            color=discord.Color.green(),
        )
        field = "\n".join(f"#{entity.id} {FAMILY_NAMES[entity.curve_family]}" for entity in state.entities)
        embed.add_field(name="Field", value=field, inline=True)
        embed.add_field(name="Gates Open", value=f"<t:{state.race_starts_at // 1000}:R>", inline=True)
        embed.add_field(name="New Balance", value=format_points(ticket.points), inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="race_status", description="Show the live standings of a race.")
    @app_commands.describe(race_id="The ID of the race.")
    async def race_status(self, interaction: discord.Interaction, race_id: str):
        await interaction.response.defer(ephemeral=True, thinking=True)
        status = await self._run(interaction, lambda caller: self.service.race_status(caller, race_id))
        if status is not None:
            await interaction.followup.send(embed=build_status_embed(status), ephemeral=True)

    @app_commands.command(name="race_item", description="Buy an item to hinder a rival horse.")
    @app_commands.describe(race_id="The ID of the race.", item="Item to use.", target="Horse number to hit.")
    @app_commands.choices(
        item=[
            app_commands.Choice(name="Mud (slow down)", value="mud"),
            app_commands.Choice(name="Stop", value="stop"),
            app_commands.Choice(name="Reverse", value="reverse"),
            app_commands.Choice(name="Change Graph", value="change_graph"),
            app_commands.Choice(name="Shuffle (everyone but your pick)", value="shuffle"),
        ]
    )
    async def race_item(self, interaction: discord.Interaction, race_id: str,
                        item: app_commands.Choice[str], target: Optional[int] = None):
        await interaction.response.defer(ephemeral=True, thinking=True)
        receipt = await self._run(
            interaction, lambda caller: self.service.apply_item(caller, race_id, item.value, target)
        )
        if receipt is None:
            return
        target_text = f"#{receipt.effect.target_id}" if receipt.effect.target_id is not None else "the field"
        embed = discord.Embed(
            title="Item Used",
            description=f"**{item.name}** hit {target_text}.",
            color=discord.Color.orange(),
        )
        embed.add_field(name="Cost", value=format_points(receipt.cost), inline=True)
        embed.add_field(name="New Balance", value=format_points(receipt.points), inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="race_settle", description="Settle your finished race and collect any winnings.")
    @app_commands.describe(race_id="The ID of the race.")
    async def race_settle(self, interaction: discord.Interaction, race_id: str):
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self._run(interaction, lambda caller: self.service.settle(caller, race_id))
        if result is None:
            return
        embed = discord.Embed(
            title="You Won!" if result.win else "Better Luck Next Time",
            description=f"Winner: **#{result.winner}**",
            color=discord.Color.green() if result.win else discord.Color.dark_grey(),
        )
        embed.add_field(name="Result", value=format_delta(result.delta), inline=True)
        embed.add_field(name="Balance", value=format_points(result.after_points), inline=True)
        if result.already_settled:
            embed.set_footer(text="This race was already settled; showing the recorded result.")
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="spin", description="Spin the colour strip.")
    @app_commands.describe(amount="Points to wager.")
    async def spin(self, interaction: discord.Interaction, amount: int):
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self._run(
            interaction,
            lambda caller: minigames.spin_color_strip(self.service.store, caller, amount, self.service.settings),
        )
        if result is None:
            return
        await interaction.followup.send(
            f"The strip stopped on **{result.color}** (x{result.multiplier:g}). "
            f"{format_delta(result.delta)} | Balance {format_points(result.points)}",
            ephemeral=True,
        )

    @app_commands.command(name="drop", description="Drop a ball into the pachinko board.")
    @app_commands.describe(bet_type="What you are betting on.", amount="Points to wager.", slot="Slot for an exact bet.")
    @app_commands.choices(
        bet_type=[app_commands.Choice(name=name.title(), value=name) for name in minigames.BET_TYPES]
    )
    async def drop(self, interaction: discord.Interaction, bet_type: app_commands.Choice[str],
                   amount: int, slot: Optional[int] = None):
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self._run(
            interaction,
            lambda caller: minigames.drop_slot(
                self.service.store, caller, bet_type.value, amount, slot, self.service.settings
            ),
        )
        if result is None:
            return
        outcome = "Win" if result.win else "Miss"
        await interaction.followup.send(
            f"The ball landed in slot **{result.final_slot}**. {outcome}: "
            f"{format_delta(result.delta)} | Balance {format_points(result.points)}",
            ephemeral=True,
        )

    @app_commands.command(name="derby_odds", description="Simulated win rates and odds for each running style.")
    @app_commands.describe(simulations="Number of races to simulate (50-2000).")
    async def derby_odds(self, interaction: discord.Interaction, simulations: app_commands.Range[int, 50, 2000] = 500):
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            bookie = Bookie(self.service.settings)
            family_odds = await asyncio.to_thread(bookie.run_monte_carlo, simulations)
        except Exception as e:
            print(f"Error running odds simulation: {e}")
            traceback.print_exc()
            await interaction.followup.send("Could not calculate odds right now.", ephemeral=True)
            return
        await interaction.followup.send(embed=build_odds_embed(family_odds, simulations), ephemeral=True)

    @app_commands.command(name="derby_help", description="Overview of the derby commands.")
    async def derby_help(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True, thinking=False)
        settings = self.service.settings
        help_lines = [
            f"`/race_start <pick> <bet>` - Back a horse (1-{settings.horses}) for "
            f"{settings.min_bet:,}-{settings.max_bet:,} points.",
            "`/race_status <race_id>` - Live standings.",
            "`/race_item <race_id> <item> [target]` - Hinder a rival. Your own pick is off limits.",
            "`/race_settle <race_id>` - Collect the result once the race is over.",
            "`/spin <amount>` - Colour strip: green x2, yellow x1.5, orange refunds, red loses.",
            "`/drop <bet_type> <amount> [slot]` - Pachinko: exact slot x2, odd/even/left/right x1.5.",
            "`/derby_odds [simulations]` - Simulated win rates per running style.",
            "`/balance` - Your points.",
        ]
        embed = discord.Embed(
            title="Derby Help",
            description="\n".join(help_lines),
            color=discord.Color.dark_blue(),
        )
        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(DerbyCommands(bot))
    print("DerbyCommands cog loaded.")
