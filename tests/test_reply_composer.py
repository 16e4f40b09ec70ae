import asyncio
from dataclasses import replace

import httpx

from baya_agent.catalog import normalize_item
from baya_agent.config import Settings
from baya_agent.coupon_policy import MILD_COUPON, NO_COUPON, STRONG_COUPON
from baya_agent.openai_client import OpenAIClient
from baya_agent.reply_composer import (
    ASK_BUDGET,
    ASK_NAME,
    ASK_ROOM,
    ASK_STYLE,
    CALL_TO_ACTION,
    FALLBACK,
    FOLLOW_UP,
    MODEL,
    MODEL_FALLBACK_REPLY,
    NO_RESULTS_REPLY,
    RECOMMEND,
    STORY,
    STORY_REPLY,
    ModelComposer,
    ReplyInputs,
    TemplateComposer,
    plan_reply,
    render_selling_reply,
    scan_history_flags,
)

FULL_SLOTS = {"name": "Dana", "location": "Tel Aviv", "room": "living room", "style": "bold", "budget": "500"}


def _items(records, coupon=NO_COUPON):
    return [normalize_item(record, coupon, "https://g.test/art/", "?buy=1") for record in records]


def _inputs(**overrides) -> ReplyInputs:
    base = ReplyInputs(message="hello", slots=dict(FULL_SLOTS))
    return replace(base, **overrides)


def test_decision_table_asks_for_name_first():
    assert plan_reply(_inputs(slots={})) == ASK_NAME


def test_decision_table_asks_missing_slots_in_order():
    assert plan_reply(_inputs(slots={"name": "Dana"})) == ASK_ROOM
    assert plan_reply(_inputs(slots={"name": "Dana", "room": "office"})) == ASK_STYLE
    assert plan_reply(_inputs(slots={"name": "Dana", "room": "office", "style": "bold"})) == ASK_BUDGET


def test_decision_table_recommends_then_tells_story_then_follows_up():
    assert plan_reply(_inputs()) == RECOMMEND
    assert plan_reply(_inputs(recommended=True, message="I love it")) == STORY
    assert plan_reply(_inputs(recommended=True, message="ok")) == FOLLOW_UP
    assert plan_reply(_inputs(recommended=True, story_told=True, message="I love it")) == FOLLOW_UP


def test_new_coupon_re_presents_items():
    assert plan_reply(_inputs(recommended=True, coupon=STRONG_COUPON, coupon_is_new=True)) == RECOMMEND


def test_selling_reply_lists_prices_and_discount(records):
    text = render_selling_reply(_items(records[:2], STRONG_COUPON), STRONG_COUPON)
    assert text.startswith("Here are some curated recommendations for you:")
    assert '1. "Bold Horizon" by Dana Katz. Acrylic, 80x60 cm. Price: $450 (instead of $500).' in text
    assert "Buy: https://g.test/art/bold%20horizon?buy=1&coupon=10OFF" in text
    assert "free fast shipping" in text
    assert "10% discount above (code 10OFF)" in text


def test_selling_reply_without_items_apologises():
    assert render_selling_reply([], NO_COUPON) == NO_RESULTS_REPLY


def test_template_recommendation_ends_with_single_call_to_action(records):
    composer = TemplateComposer()
    reply = asyncio.run(composer.compose(_inputs(items=_items(records, MILD_COUPON), coupon=MILD_COUPON)))
    assert reply.stage == RECOMMEND
    assert reply.text.endswith(CALL_TO_ACTION)
    assert reply.text.count(CALL_TO_ACTION) == 1
    assert "5% discount" in reply.text


def test_template_weaves_story_once_when_interest_detected(records):
    composer = TemplateComposer()
    reply = asyncio.run(composer.compose(_inputs(message="I love bold art", items=_items(records))))
    assert STORY_REPLY in reply.text
    told = asyncio.run(composer.compose(_inputs(message="I love bold art", items=_items(records), story_told=True)))
    assert STORY_REPLY not in told.text


def test_template_greets_newly_learned_name():
    composer = TemplateComposer()
    reply = asyncio.run(composer.compose(_inputs(slots={"name": "Dana"}, name_is_new=True)))
    assert reply.stage == ASK_ROOM
    assert reply.text.startswith("Lovely to meet you, Dana!")


def test_template_story_and_follow_up_end_with_call_to_action():
    composer = TemplateComposer()
    story = asyncio.run(composer.compose(_inputs(recommended=True, message="tell me more")))
    assert story.stage == STORY
    assert story.text.endswith(CALL_TO_ACTION)
    follow = asyncio.run(composer.compose(_inputs(recommended=True, story_told=True, message="hmm")))
    assert follow.stage == FOLLOW_UP
    assert follow.text.endswith(CALL_TO_ACTION)


def test_history_flags_come_from_assistant_turns():
    flags = scan_history_flags(
        [
            {"role": "user", "content": "october 7 curated recommendations 10% off"},
            {"role": "assistant", "content": "Here are some curated recommendations for you:"},
            {"role": "assistant", "content": "As a courtesy, I've applied a 5% discount above."},
        ]
    )
    assert flags == {"recommended": True, "story_told": False, "discount_offered": True}


def _model_composer(handler, prompts_dir, history_limit=8):
    settings = Settings(openai_api_key="sk-test")
    client = OpenAIClient(settings, transport=httpx.MockTransport(handler))
    return ModelComposer(client, prompts_dir, history_limit=history_limit)


def test_model_composer_sends_state_items_and_trailing_history(records, recording_transport, completion_body):
    recorder = recording_transport(body=completion_body("Hi Dana! How about Bold Horizon?"))
    composer = _model_composer(recorder, Settings().prompts_dir, history_limit=2)
    history = [{"role": "user", "content": f"turn {index}"} for index in range(5)]
    inputs = _inputs(message="show me", items=_items(records[:1], MILD_COUPON), coupon=MILD_COUPON, history=history)

    reply = asyncio.run(composer.compose(inputs))

    assert reply.stage == MODEL
    assert reply.text == "Hi Dana! How about Bold Horizon?"
    payload = recorder.last_json()
    messages = payload["messages"]
    assert messages[0]["role"] == "system"
    assert "Name: Dana" in messages[0]["content"]
    assert '"Bold Horizon" by Dana Katz' in messages[0]["content"]
    assert "$475" in messages[0]["content"]
    assert "5% (code 5OFF)" in messages[0]["content"]
    assert [m["content"] for m in messages[1:]] == ["turn 3", "turn 4", "show me"]


def test_model_composer_falls_back_on_api_error(recording_transport):
    recorder = recording_transport(status=500, body={"error": "boom"})
    composer = _model_composer(recorder, Settings().prompts_dir)
    reply = asyncio.run(composer.compose(_inputs()))
    assert reply.stage == FALLBACK
    assert reply.text == MODEL_FALLBACK_REPLY


def test_model_composer_falls_back_without_credential(completion_body):
    settings = Settings(openai_api_key="")
    called = []

    def handler(request):
        called.append(request)
        return httpx.Response(200, json=completion_body("never"))

    composer = ModelComposer(OpenAIClient(settings, transport=httpx.MockTransport(handler)), settings.prompts_dir)
    reply = asyncio.run(composer.compose(_inputs()))
    assert reply.text == MODEL_FALLBACK_REPLY
    assert called == []
