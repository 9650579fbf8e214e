"""
Notification delivery and rating-ledger helpers.
"""

import asyncio

from pong_rank import notify
from pong_rank.ledger import replay


class SlowNotifier:
    async def notify(self, payload, recipient_ids):
        await asyncio.sleep(10)


class ExplodingNotifier:
    async def notify(self, payload, recipient_ids):
        raise ConnectionError("gateway closed")


def test_deliver_times_out():
    ok = asyncio.run(notify.deliver(SlowNotifier(), {"event": "match_confirmed", "match_id": 1}, [1], timeout=0.05))
    assert ok is False


def test_deliver_swallows_errors():
    ok = asyncio.run(notify.deliver(ExplodingNotifier(), {"event": "match_submitted", "match_id": 2}, [1, 2]))
    assert ok is False


def test_deliver_skips_empty_recipients():
    assert asyncio.run(notify.deliver(notify.NullNotifier(), {"event": "match_rejected"}, [])) is False
    assert asyncio.run(notify.deliver(notify.NullNotifier(), {"event": "match_rejected"}, [3])) is True


def test_replay():
    assert replay([24, -20, 5]) == [1524, 1504, 1509]
    assert replay([], starting_rating=1200) == []
