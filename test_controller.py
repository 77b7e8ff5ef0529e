# -*- coding: utf-8 -*-
"""
コントローラーのテスト（振り分けとルールごとのエラー分離）
"""

import logging

import httpx
import pytest

from conftest import CHANNEL_ID, MESSAGE_ID, message_event, reaction_event
from controller import Controller
from gateway_events import EventType
from rules import parse_rules

LOGGER = logging.getLogger("tests.controller")


def _controller(*rules):
    return Controller(parse_rules({"rules": list(rules)}), LOGGER)


ECHO_PONG = {
    "event": "MESSAGE_CREATE",
    "filters": {"content": "^!ping$"},
    "action": {"type": "Echo", "options": {"content": "pong"}},
}
REACT_EYES = {
    "event": "MESSAGE_CREATE",
    "action": {"type": "React", "options": {"emojis": ["👀"]}},
}
ADD_MISSING_ROLE = {
    "event": "MESSAGE_CREATE",
    "action": {"type": "AddRole", "options": {"role_name": "ghost"}},
}
REACTION_ECHO = {
    "event": "MESSAGE_REACTION_ADD",
    "filters": {"emoji": "✅"},
    "action": {"type": "Echo", "options": {"content": "checked"}},
}


def test_rules_grouped_by_event(caplog):
    with caplog.at_level(logging.INFO, logger="tests.controller"):
        controller = _controller(ECHO_PONG, REACTION_ECHO, REACT_EYES)

    assert [r.action_name for r in controller.rules_for(EventType.MESSAGE_CREATE)] == ["Echo", "React"]
    assert [r.action_name for r in controller.rules_for(EventType.MESSAGE_REACTION_ADD)] == ["Echo"]
    assert controller.rules_for(EventType.READY) == []
    assert caplog.text.count("Found") == 3


@pytest.mark.asyncio
async def test_matching_rules_run_in_order(context, fake_api):
    controller = _controller(ECHO_PONG, REACT_EYES, REACTION_ECHO)

    executed = await controller.handle_event(context, message_event(content="!ping"))

    assert executed == 2
    assert fake_api.calls == [
        ("create_message", CHANNEL_ID, "pong"),
        ("create_reaction", CHANNEL_ID, MESSAGE_ID, "👀"),
    ]


@pytest.mark.asyncio
async def test_non_matching_rules_are_skipped(context, fake_api):
    controller = _controller(ECHO_PONG)

    assert await controller.handle_event(context, message_event(content="hello")) == 0
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_failing_rule_does_not_stop_others(context, fake_api, caplog):
    controller = _controller(ADD_MISSING_ROLE, REACT_EYES)

    with caplog.at_level(logging.ERROR, logger="tests.controller"):
        executed = await controller.handle_event(context, message_event())

    assert executed == 1
    assert fake_api.calls == [("create_reaction", CHANNEL_ID, MESSAGE_ID, "👀")]
    assert "AddRole action failed: Could not get role_id or user_id" in caplog.text


@pytest.mark.asyncio
async def test_http_failure_is_isolated(make_context, fake_api, caplog):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    context = make_context(refuse)
    controller = _controller(
        {"event": "MESSAGE_CREATE", "action": {"type": "Webhook", "options": {"url": "http://hooks.local"}}},
        REACT_EYES,
    )

    with caplog.at_level(logging.ERROR, logger="tests.controller"):
        executed = await controller.handle_event(context, message_event())

    assert executed == 1
    assert "Webhook action failed" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_error_is_logged_with_traceback(context, fake_api, caplog):
    async def broken(*args):
        raise RuntimeError("kaboom")

    fake_api.create_message = broken
    controller = _controller(ECHO_PONG, REACT_EYES)

    with caplog.at_level(logging.ERROR, logger="tests.controller"):
        executed = await controller.handle_event(context, message_event(content="!ping"))

    assert executed == 1
    assert "Unexpected error in Echo rule #0" in caplog.text
    assert "RuntimeError: kaboom" in caplog.text


@pytest.mark.asyncio
async def test_reaction_events_use_reaction_rules(context, fake_api):
    controller = _controller(ECHO_PONG, REACTION_ECHO)

    assert await controller.handle_event(context, reaction_event(emoji_name="✅")) == 1
    assert await controller.handle_event(context, reaction_event(emoji_name="❌")) == 0
    assert fake_api.calls == [("create_message", CHANNEL_ID, "checked")]
