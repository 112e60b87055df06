import time

import pytest

from tgdispatch.adapters.telegram.bot_api import FakeBotApi
from tgdispatch.core.models import parse_update
from tgdispatch.dispatch import predicates as P
from tgdispatch.dispatch.dispatcher import Dispatcher
from tgdispatch.observability.metrics import get_counter, get_counter_labelled


def _text(uid, text, chat_id=42):
    return parse_update({"update_id": uid, "message": {"message_id": uid, "chat": {"id": chat_id}, "text": text}})


def test_every_matching_handler_runs_once_in_registration_order():
    d = Dispatcher()
    calls = []
    d.register(P.text(), lambda ctx: calls.append("generic"), name="generic")
    d.register(P.command("start"), lambda ctx: calls.append("start"), name="start")
    d.register(P.hears("hi"), lambda ctx: calls.append("hi"), name="hi")
    d.register(P.any_update(), lambda ctx: calls.append("any"), name="any")

    res = d.dispatch(_text(1, "hi"))
    assert calls == ["generic", "hi", "any"]
    assert res.matched == ["generic", "hi", "any"]
    assert res.failed == []


def test_no_match_invokes_nothing():
    d = Dispatcher()
    d.register(P.sticker(), lambda ctx: pytest.fail("should not run"), name="sticker")
    res = d.dispatch(_text(1, "plain"))
    assert res.matched == [] and not res.duplicate


def test_failing_handler_does_not_stop_later_handlers():
    d = Dispatcher()
    calls = []

    def boom(ctx):
        raise RuntimeError("boom")

    d.register(P.text(), lambda ctx: calls.append("first"), name="first")
    d.register(P.text(), boom, name="boom")
    d.register(P.text(), lambda ctx: calls.append("last"), name="last")
    base = get_counter_labelled("handler_errors", {"handler": "boom"})

    res = d.dispatch(_text(2, "anything"))
    assert calls == ["first", "last"]
    assert res.failed == ["boom"]
    assert res.succeeded == ["first", "last"]
    assert get_counter_labelled("handler_errors", {"handler": "boom"}) == base + 1


def test_failing_predicate_is_isolated():
    d = Dispatcher()
    calls = []

    def bad_pred(u):
        raise KeyError("nope")

    d.register(bad_pred, lambda ctx: calls.append("never"), name="bad")
    d.register(P.text(), lambda ctx: calls.append("ok"), name="ok")
    res = d.dispatch(_text(3, "x"))
    assert calls == ["ok"]
    assert res.failed == ["bad"]


def test_duplicate_update_ids_are_skipped_within_window():
    d = Dispatcher(dedupe_window=2)
    calls = []
    d.register(P.any_update(), lambda ctx: calls.append(ctx.update.update_id), name="rec")
    base = get_counter("updates_duplicate")

    d.dispatch(_text(1, "a"))
    assert d.dispatch(_text(1, "a")).duplicate
    d.dispatch(_text(2, "b"))
    d.dispatch(_text(3, "c"))
    # id 1 fell out of the window of 2
    d.dispatch(_text(1, "a"))
    assert calls == [1, 2, 3, 1]
    assert get_counter("updates_duplicate") == base + 1


def test_registration_is_frozen_after_first_dispatch():
    d = Dispatcher()
    d.register(P.text(), lambda ctx: None, name="a")
    d.dispatch(_text(1, "x"))
    assert d.sealed
    with pytest.raises(RuntimeError):
        d.register(P.text(), lambda ctx: None, name="b")
    assert [r.name for r in d.registrations] == ["a"]


def test_decorators_and_reply_through_api():
    api = FakeBotApi()
    d = Dispatcher(api=api)

    @d.command("start")
    def start(ctx):
        ctx.reply("welcome")

    @d.callback(r"^vote:")
    def vote(ctx):
        ctx.reply(f"got {ctx.update.payload.data}")

    d.dispatch(parse_update({"update_id": 1, "message": {"chat": {"id": 5}, "text": "/start"}}))
    d.dispatch(
        parse_update(
            {"update_id": 2, "callback_query": {"id": "c", "data": "vote:no", "message": {"message_id": 3, "chat": {"id": 6}}}}
        )
    )
    assert api.sent == [(5, "welcome"), (6, "got vote:no")]
    assert [r.name for r in d.registrations] == ["start", "vote"]


def test_reply_without_chat_counts_as_handler_failure():
    d = Dispatcher(api=FakeBotApi())
    d.register(P.any_update(), lambda ctx: ctx.reply("x"), name="replier")
    res = d.dispatch(parse_update({"update_id": 9, "poll": {"id": "p"}}))
    assert res.failed == ["replier"]


def test_slow_handler_is_reported():
    d = Dispatcher(handler_timeout_s=0.01)
    d.register(P.any_update(), lambda ctx: time.sleep(0.05), name="slow")
    base = get_counter("handler_slow")
    res = d.dispatch(_text(1, "x"))
    assert res.succeeded == ["slow"]
    assert get_counter("handler_slow") == base + 1


def test_handlers_sharing_a_name_keep_separate_outcomes():
    d = Dispatcher()

    def boom(ctx):
        raise RuntimeError("boom")

    d.register(P.text(), boom, name="dup")
    d.register(P.text(), lambda ctx: None, name="dup")
    res = d.dispatch(_text(4, "x"))
    assert res.matched == ["dup", "dup"]
    assert res.failed == ["dup"]
    assert res.succeeded == ["dup"]


def test_command_decorator_uses_bot_username():
    api = FakeBotApi()
    d = Dispatcher(api=api, bot_username="my_bot")

    @d.command("start")
    def start(ctx):
        ctx.reply("welcome")

    d.dispatch(_text(1, "/start@other_bot", chat_id=1))
    d.dispatch(_text(2, "/start@my_bot", chat_id=2))
    assert api.sent == [(2, "welcome")]
