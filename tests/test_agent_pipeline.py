import asyncio

import httpx

from baya_agent.agent_pipeline import SalesAgent
from baya_agent.openai_client import OpenAIClient
from baya_agent.reply_composer import (
    ASK_NAME,
    ASK_ROOM,
    FALLBACK,
    FOLLOW_UP,
    MODEL_FALLBACK_REPLY,
    RECOMMEND,
    ModelComposer,
    TemplateComposer,
)
from baya_agent.session_store import SessionStore


def _agent(records, settings, composer=None, sessions=None):
    return SalesAgent(
        catalog=records,
        sessions=sessions or SessionStore(),
        composer=composer or TemplateComposer(),
        settings=settings,
    )


def test_first_turn_with_full_introduction_recommends(records, make_settings):
    agent = _agent(records, make_settings())
    message = "Hi, I'm Dana, from Tel Aviv, looking for something bold for my living room, budget $500"
    context = asyncio.run(agent.handle_message("s1", message))

    assert context.slots["name"] == "Dana"
    assert context.slots["location"] == "Tel Aviv"
    assert context.stage == RECOMMEND
    assert context.items[0].id == "A1"
    assert len(context.items) <= 3
    assert context.session.recommended is True
    assert [entry["role"] for entry in context.session.history] == ["user", "assistant"]


def test_slots_accumulate_across_turns(records, make_settings):
    agent = _agent(records, make_settings())
    first = asyncio.run(agent.handle_message("s2", "hello"))
    assert first.stage == ASK_NAME
    second = asyncio.run(agent.handle_message("s2", "Dana"))
    assert second.stage == ASK_ROOM
    assert second.name_is_new is True
    assert second.reply.startswith("Lovely to meet you, Dana!")
    asyncio.run(agent.handle_message("s2", "the bedroom"))
    asyncio.run(agent.handle_message("s2", "minimal please"))
    final = asyncio.run(agent.handle_message("s2", "$300"))
    assert final.stage == RECOMMEND
    assert final.slots == {"name": "Dana", "location": None, "room": "bedroom", "style": "minimal", "budget": "300"}
    assert final.items[0].id == "A2"


def test_buyer_name_from_meta_seeds_the_slot(records, make_settings):
    agent = _agent(records, make_settings())
    context = asyncio.run(agent.handle_message("s3", "hello", buyer_name="Ruth"))
    assert context.slots["name"] == "Ruth"
    assert context.stage == ASK_ROOM


def test_known_name_survives_bare_capitalized_replies(records, make_settings):
    agent = _agent(records, make_settings())
    asyncio.run(agent.handle_message("s3b", "hello", buyer_name="Ruth"))
    for reply in ("Modern", "Still Water", "Haifa"):
        context = asyncio.run(agent.handle_message("s3b", reply))
        assert context.slots["name"] == "Ruth"
        assert context.name_is_new is False
        assert not context.reply.startswith("Lovely to meet you")


def test_name_outlives_the_history_window(records, make_settings):
    agent = _agent(records, make_settings())
    asyncio.run(agent.handle_message("s3c", "I'm Dana, bold art for the living room, around $500"))
    for _ in range(9):
        asyncio.run(agent.handle_message("s3c", "ok"))
    context = asyncio.run(agent.handle_message("s3c", "Still Water"))
    assert all("Dana" not in entry["content"] for entry in context.history)
    assert context.slots["name"] == "Dana"


def test_explicit_introduction_replaces_known_name(records, make_settings):
    agent = _agent(records, make_settings())
    asyncio.run(agent.handle_message("s3d", "hello", buyer_name="Ruth"))
    context = asyncio.run(agent.handle_message("s3d", "Sorry, my name is Dana"))
    assert context.slots["name"] == "Dana"
    assert context.session.name == "Dana"



def test_coupon_is_applied_once_and_sticks(records, make_settings):
    agent = _agent(records, make_settings())
    intro = "I'm Dana, bold art for the living room, around $500"
    asyncio.run(agent.handle_message("s4", intro))
    pricey = asyncio.run(agent.handle_message("s4", "this feels too expensive"))
    assert pricey.coupon.percent == 10
    assert pricey.coupon_is_new is True
    assert pricey.stage == RECOMMEND
    assert all(item.discount_percent == 10 for item in pricey.items)
    later = asyncio.run(agent.handle_message("s4", "still too expensive"))
    assert later.coupon.percent == 10
    assert later.coupon_is_new is False
    assert later.stage == FOLLOW_UP


def test_client_history_replay_suppresses_repeats(records, make_settings):
    agent = _agent(records, make_settings())
    history = [
        {"role": "user", "content": "I'm Dana, bold art for the living room, budget $500"},
        {"role": "assistant", "content": "Here are some curated recommendations for you: ... I've applied a 5% discount above."},
    ]
    context = asyncio.run(agent.handle_message("fresh", "too expensive", history=history))
    assert context.slots["name"] == "Dana"
    assert context.coupon.percent == 0
    assert context.stage == FOLLOW_UP


def test_empty_catalog_still_answers(make_settings):
    agent = _agent([], make_settings())
    context = asyncio.run(agent.handle_message("s5", "I'm Dana, bold art for the office, budget $200"))
    assert context.items == []
    assert context.reply


def test_model_strategy_without_key_uses_filler(records, make_settings):
    settings = make_settings(openai_api_key="", reply_strategy="model")
    client = OpenAIClient(settings, transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    agent = _agent(records, settings, composer=ModelComposer(client, settings.prompts_dir))
    context = asyncio.run(agent.handle_message("s6", "hello"))
    assert context.stage == FALLBACK
    assert context.reply == MODEL_FALLBACK_REPLY
    assert len(context.items) == 3
