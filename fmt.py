from typing import Any, Iterable, Optional

from pong_rank.tiers import tier_for


def bold(t: str) -> str:
	return f"**{t}**"


def code(t: str) -> str:
	return f"`{t}`"


def block(t: str, lang: str | None = None) -> str:
	return f"```{lang or ''}\n{t}\n```"


def mention(uid: int) -> str:
	return f"<@{uid}>"


def signed(delta: Optional[int]) -> str:
	"""Rating change with an explicit sign ("+16", "-16", "±0"); "?" when unknown."""
	if delta is None:
		return "?"
	if delta == 0:
		return "±0"
	return f"{delta:+d}"


def side(ids: Iterable[int]) -> str:
	return " & ".join(mention(uid) for uid in ids)


def versus(side_a: Iterable[int], side_b: Iterable[int]) -> str:
	return f"{side(side_a)} vs {side(side_b)}"


def rating_with_tier(rating: int) -> str:
	tier = tier_for(rating)
	return f"{rating} {tier.emoji} {tier.label}"


def render_notification(payload: dict[str, Any]) -> str:
	"""Turn a notification payload into a Discord message."""
	event = payload.get("event")
	mid = payload.get("match_id")
	line = versus(payload.get("side_a", []), payload.get("side_b", []))
	score = f"{payload.get('games_a', 0)}–{payload.get('games_b', 0)}"

	if event == "match_submitted":
		deadline = payload.get("confirm_deadline", "")
		tip = block(f"/confirm match_id:{mid}\n/reject match_id:{mid}", "md")
		return (
			f"{bold(f'Please confirm Match #{mid}')}\n{line}\n{score}\n"
			f"Reported by {mention(payload.get('submitted_by', 0))}. "
			f"It confirms automatically at {code(deadline)}.\n\n{tip}"
		)
	if event == "match_confirmed":
		how = "auto-confirmed" if payload.get("auto_confirmed") else "confirmed"
		changes = payload.get("rating_changes") or {}
		deltas = ", ".join(f"{mention(int(uid))} {signed(d)}" for uid, d in changes.items())
		return f"{bold(f'Match #{mid} {how}')}\n{line}\n{score}\n{deltas}"
	if event == "match_rejected":
		return f"{bold(f'Match #{mid} rejected')} by {mention(payload.get('rejected_by', 0))}\n{line}\n{score}"
	if event == "match_reverted":
		return f"{bold(f'Match #{mid} reverted')} by an admin; ratings restored.\n{line}\n{score}"
	return f"Match #{mid}: {event}"


def mono_table(rows: list[list[str]], headers: Optional[list[str]] = None) -> str:
	"""Render a simple monospaced table as a Markdown code block.

	- Pads columns to the widest cell
	- Includes a header divider if headers are provided
	"""
	# Normalize all to strings and compute column count
	norm_rows = [[str(c) for c in r] for r in rows]
	col_count = max((len(r) for r in norm_rows), default=0)
	if headers:
		headers = [str(h) for h in headers]
		col_count = max(col_count, len(headers))

	def pad_row(r: Iterable[str]) -> list[str]:
		lst = list(r)
		if len(lst) < col_count:
			lst += [""] * (col_count - len(lst))
		return lst

	if headers:
		headers = pad_row(headers)
	norm_rows = [pad_row(r) for r in norm_rows]

	widths = [0] * col_count
	if headers:
		for i, cell in enumerate(headers):
			widths[i] = max(widths[i], len(cell))
	for r in norm_rows:
		for i, cell in enumerate(r):
			widths[i] = max(widths[i], len(cell))

	def fmt_row(r: list[str]) -> str:
		return " | ".join((r[i].ljust(widths[i]) for i in range(col_count)))

	lines: list[str] = []
	if headers:
		lines.append(fmt_row(headers))
		divider = "-+-".join("-" * w for w in widths)
		lines.append(divider)
	for r in norm_rows:
		lines.append(fmt_row(r))

	return block("\n".join(lines), "md")
