# app.py
# Discord table tennis ladder: report series results, confirm/reject, admin revert, hourly auto-confirm

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import discord
from discord import app_commands
from discord.ext import tasks

import fmt
from pong_rank import db
from pong_rank.config import Settings
from pong_rank.logging_config import get_logger, setup_logging
from pong_rank.models import DOUBLES, ROLE_ADMIN, ROLE_USER, SINGLES, Player, Result
from pong_rank.service import Ladder

setup_logging()
log = get_logger("pong_rank.app")

# --- Env / Config ---
settings = Settings.from_env()

ALLOWED_MENTIONS = discord.AllowedMentions(users=True, roles=False, everyone=False)

# Intents
intents = discord.Intents.none()
intents.guilds = True

# Discord client + tree
bot = discord.Client(intents=intents)
tree = app_commands.CommandTree(bot)


class DiscordNotifier:
    """Delivers ladder notifications as direct messages."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def notify(self, payload: dict[str, Any], recipient_ids: list[int]) -> None:
        text = fmt.render_notification(payload)
        for user_id in recipient_ids:
            try:
                user = await self.client.fetch_user(user_id)
                await user.send(text, allowed_mentions=ALLOWED_MENTIONS)
            except (discord.Forbidden, discord.NotFound):
                log.debug("Cannot DM user=%s about match=%s", user_id, payload.get("match_id"))


ladder = Ladder(settings, notifier=DiscordNotifier(bot))


# --- Helpers ---
async def is_admin(inter: discord.Interaction) -> bool:
    if settings.is_admin(inter.user.id):
        return True
    if isinstance(inter.user, discord.Member) and inter.user.guild_permissions.administrator:
        return True
    player = await db.get_player(inter.user.id)
    return player is not None and Player.from_row(player).is_admin


async def ensure_players(*users: discord.abc.User) -> None:
    for user in users:
        role = ROLE_ADMIN if settings.is_admin(user.id) else ROLE_USER
        await db.get_or_create_player(
            user.id,
            (getattr(user, "display_name", None) or user.name)[:60],
            base_rating=settings.starting_rating,
            role=role,
        )


def failure_text(result: Result) -> str:
    return f"❌ {result.message}"


async def report(
    inter: discord.Interaction,
    kind: str,
    mine: list[discord.abc.User],
    theirs: list[discord.abc.User],
    my_games: int,
    their_games: int,
):
    await inter.response.defer(ephemeral=True)
    await ensure_players(*mine, *theirs)
    result = await ladder.submit(
        kind,
        [u.id for u in mine],
        [u.id for u in theirs],
        my_games,
        their_games,
        submitter_id=inter.user.id,
        submitter_is_admin=await is_admin(inter),
    )
    if not result.ok:
        return await inter.followup.send(failure_text(result), ephemeral=True)

    match = result.match
    line = fmt.versus(match.side_a, match.side_b)
    if match.status == "confirmed":
        deltas = ", ".join(f"{fmt.mention(uid)} {fmt.signed(d)}" for uid, d in match.rating_changes.items())
        msg = f"{fmt.bold(f'Match #{match.id} recorded')}\n{line}\n{match.games_a}–{match.games_b}\n{deltas}"
    else:
        msg = (
            f"{fmt.bold(f'Match #{match.id} submitted')}\n{line}\n{match.games_a}–{match.games_b}\n"
            f"Opponents have until {fmt.code(match.confirm_deadline.strftime('%Y-%m-%d %H:%M UTC'))} "
            f"to confirm or reject; after that it confirms automatically."
        )
    await inter.followup.send(msg, ephemeral=True, allowed_mentions=ALLOWED_MENTIONS)


# --- Background auto-confirm ---
@tasks.loop(minutes=settings.sweep_interval_minutes)
async def auto_confirm_loop():
    result = await ladder.sweep(datetime.now(timezone.utc))
    if result.total_checked:
        log.info(
            "Auto-confirm: %s confirmed, %s failed of %s",
            result.confirmed_count, result.failed_count, result.total_checked,
        )


@auto_confirm_loop.before_loop
async def _before_auto_confirm():
    await bot.wait_until_ready()


# --- Discord events ---
@bot.event
async def on_ready():
    await db.init_db(settings.database_path, busy_timeout=settings.db_busy_timeout)

    if settings.database_path.startswith("file::memory:"):
        log.warning("Ephemeral DB mode active: data will NOT persist between restarts")

    if settings.test_mode and settings.test_guild_id:
        await tree.sync(guild=discord.Object(id=settings.test_guild_id))
        log.info("Commands synced to test guild %s", settings.test_guild_id)
    else:
        await tree.sync()
        log.info("Commands synced globally")

    if not auto_confirm_loop.is_running():
        auto_confirm_loop.start()

    status = "Table tennis 🏓 [TEST MODE]" if settings.test_mode else "Table tennis 🏓"
    await bot.change_presence(activity=discord.Game(name=status))
    log.info("Bot ready as %s | guilds=%s | DB=%s", bot.user, len(bot.guilds), settings.database_path)


# --- Commands ---
@tree.command(name="report_singles", description="Report a singles series you played")
@app_commands.describe(opponent="Who you played", my_games="Games you won", their_games="Games they won")
async def report_singles(
    inter: discord.Interaction,
    opponent: discord.User,
    my_games: app_commands.Range[int, 0, 99],
    their_games: app_commands.Range[int, 0, 99],
):
    await report(inter, SINGLES, [inter.user], [opponent], my_games, their_games)


@tree.command(name="report_doubles", description="Report a doubles series you played")
@app_commands.describe(
    partner="Your teammate",
    opponent1="Opponent 1",
    opponent2="Opponent 2",
    my_games="Games your team won",
    their_games="Games their team won",
)
async def report_doubles(
    inter: discord.Interaction,
    partner: discord.User,
    opponent1: discord.User,
    opponent2: discord.User,
    my_games: app_commands.Range[int, 0, 99],
    their_games: app_commands.Range[int, 0, 99],
):
    await report(inter, DOUBLES, [inter.user, partner], [opponent1, opponent2], my_games, their_games)


@tree.command(name="confirm", description="Confirm a pending match result")
@app_commands.describe(match_id="Match ID")
async def confirm(inter: discord.Interaction, match_id: int):
    await inter.response.defer(ephemeral=True)
    result = await ladder.confirm(match_id, inter.user.id, caller_is_admin=await is_admin(inter))
    if not result.ok:
        return await inter.followup.send(failure_text(result), ephemeral=True)
    change = result.match.rating_changes.get(inter.user.id)
    tail = f" Your rating change: {fmt.code(fmt.signed(change))}" if change is not None else ""
    await inter.followup.send(f"✅ Match #{match_id} confirmed.{tail}", ephemeral=True)


@tree.command(name="reject", description="Reject a pending match result")
@app_commands.describe(match_id="Match ID")
async def reject(inter: discord.Interaction, match_id: int):
    await inter.response.defer(ephemeral=True)
    result = await ladder.reject(match_id, inter.user.id)
    if not result.ok:
        return await inter.followup.send(failure_text(result), ephemeral=True)
    await inter.followup.send(f"Match #{match_id} rejected. No ratings changed.", ephemeral=True)


@tree.command(name="revert", description="Admin: delete a confirmed match and restore ratings")
@app_commands.describe(match_id="Match ID")
async def revert(inter: discord.Interaction, match_id: int):
    await inter.response.defer(ephemeral=True)
    result = await ladder.revert(match_id, caller_is_admin=await is_admin(inter), caller_id=inter.user.id)
    if not result.ok:
        return await inter.followup.send(failure_text(result), ephemeral=True)
    log.info("Admin %s reverted match #%s", inter.user.id, match_id)
    await inter.followup.send(f"↩️ Match #{match_id} reverted; ratings restored.", ephemeral=True)


@tree.command(name="auto_confirm", description="Admin: run the auto-confirmation sweep now")
async def auto_confirm(inter: discord.Interaction):
    if not await is_admin(inter):
        return await inter.response.send_message("Only admins can run the sweep.", ephemeral=True)
    await inter.response.defer(ephemeral=True)
    result = await ladder.sweep()
    await inter.followup.send(
        f"Auto-confirmed {result.confirmed_count} matches, {result.failed_count} failed "
        f"({result.total_checked} checked).",
        ephemeral=True,
    )


@tree.command(name="pending", description="List your pending matches")
async def pending(inter: discord.Interaction):
    await inter.response.defer(ephemeral=True)
    matches = await ladder.pending_for(inter.user.id)
    if not matches:
        return await inter.followup.send("You have no pending matches!", ephemeral=True)

    rows = []
    for m in matches:
        waiting_on = "them" if m.submitted_by == inter.user.id else "you"
        rows.append([
            f"#{m.id}",
            m.kind,
            f"{m.games_a}-{m.games_b}",
            m.confirm_deadline.strftime("%m-%d %H:%M"),
            waiting_on,
        ])
    table = fmt.mono_table(rows, headers=["Match", "Kind", "Score", "Auto (UTC)", "Waiting on"])
    hint = fmt.block("/confirm match_id:<ID>\n/reject match_id:<ID>", "md")
    await inter.followup.send(table + "\n" + hint, ephemeral=True)


@tree.command(name="recent", description="Latest matches, optionally for one player")
async def recent(inter: discord.Interaction, user: discord.User | None = None, limit: app_commands.Range[int, 1, 25] = 10):
    matches = await ladder.recent(user.id if user else None, limit=limit)
    if not matches:
        return await inter.response.send_message("No matches yet.", ephemeral=True)
    lines = [
        f"#{m.id} {fmt.versus(m.side_a, m.side_b)} {m.games_a}–{m.games_b} ({m.status})"
        for m in matches
    ]
    await inter.response.send_message("\n".join(lines), allowed_mentions=discord.AllowedMentions.none())


@tree.command(name="leaderboard", description="Top players by rating")
async def leaderboard(inter: discord.Interaction, limit: app_commands.Range[int, 1, 50] = 20):
    players = await ladder.leaderboard(limit)
    if not players:
        return await inter.response.send_message("No players yet.")
    rows = [
        [str(i), p.username, fmt.rating_with_tier(p.rating), f"{p.wins}-{p.losses}"]
        for i, p in enumerate(players, start=1)
    ]
    await inter.response.send_message(fmt.mono_table(rows, headers=["#", "Player", "Rating", "W-L"]))


@tree.command(name="stats", description="Rating, tier and recent changes for a player")
async def stats(inter: discord.Interaction, user: discord.User):
    data = await ladder.player_stats(user.id, history_limit=10)
    if data is None:
        return await inter.response.send_message(f"{user.display_name} has not played yet.", ephemeral=True)
    player = data["player"]
    nxt = data["points_to_next_tier"]
    lines = [
        fmt.bold(player.username),
        f"Rating: {fmt.rating_with_tier(player.rating)} (rank #{data['rank']})",
        f"Record: {player.wins}W / {player.losses}L",
    ]
    if nxt is not None:
        lines.append(f"{nxt} points to the next tier")
    if data["history"]:
        recent = " ".join(fmt.signed(h.delta) for h in data["history"])
        lines.append(f"Recent: {fmt.code(recent)}")
    await inter.response.send_message("\n".join(lines), allowed_mentions=ALLOWED_MENTIONS)


# --- Entrypoint ---
if __name__ == "__main__":
    if not settings.discord_token:
        log.error("DISCORD_TOKEN not set. Put it in environment or .env")
        raise SystemExit(1)
    bot.run(settings.discord_token, log_handler=None)
