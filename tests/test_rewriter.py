"""
Tests for heuristic and LLM-backed query rewriting.
"""

import json

import httpx
import pytest

from vibe_search.models import ANY_TYPE, MOVIE, TV_SHOW
from vibe_search.rewriter import QueryRewriter, extract_json, heuristic_rewrite

MINDFUCK_TERMS = ["mind-bending", "plot twist", "reality-bending", "psychological thriller", "time loop"]


class FakeClock:
	def __init__(self, now: float = 1000.0):
		self.now = now

	def __call__(self) -> float:
		return self.now


def llm_reply(content: str, status: int = 200):
	calls = []

	def handler(request: httpx.Request) -> httpx.Response:
		calls.append(json.loads(request.content))
		if status != 200:
			return httpx.Response(status, json={"error": "nope"})
		return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

	return handler, calls


def make_rewriter(handler, api_key="test-key", clock=None) -> QueryRewriter:
	client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
	return QueryRewriter(lambda: api_key, http_client=client, clock=clock or FakeClock())


def test_mindfuck_scenario():
	result = heuristic_rewrite("mindfuck")
	for term in MINDFUCK_TERMS:
		assert term in result.embed_query
	assert result.embed_query.startswith("mindfuck ")
	assert result.min_score_ratio == 0.6
	assert result.preferred_type == ANY_TYPE
	assert "mindfuck" in result.rerank_query


def test_matching_rules_union_terms_and_take_tightest_ratio():
	result = heuristic_rewrite("psychological revenge thriller")
	assert "mind games" in result.embed_query
	assert "vengeance" in result.embed_query
	assert result.min_score_ratio == 0.7


def test_default_ratio_by_word_count():
	assert heuristic_rewrite("quiet village").min_score_ratio == 0.65
	assert heuristic_rewrite("quiet village by the sea").min_score_ratio == 0.7
	assert heuristic_rewrite("quiet village by the sea at dawn").min_score_ratio == 0.75


def test_type_inference_and_rule_hints():
	assert heuristic_rewrite("kdrama").preferred_type == TV_SHOW
	assert heuristic_rewrite("kdrama movie").preferred_type == MOVIE
	assert heuristic_rewrite("cozy tv comfort").preferred_type == TV_SHOW
	assert heuristic_rewrite("cozy comfort").preferred_type == ANY_TYPE


def test_embed_query_is_capped_at_25_words():
	raw = " ".join(f"w{i}" for i in range(30)) + " heist"
	result = heuristic_rewrite(raw)
	assert len(result.embed_query.split()) == 25


def test_extract_json_slices_outer_object():
	assert extract_json('Sure! {"embedQuery": "x"} hope that helps') == {"embedQuery": "x"}
	assert extract_json("no json here") is None
	assert extract_json("[1, 2]") is None


@pytest.mark.asyncio
async def test_llm_rewrite_parses_and_clamps():
	content = 'Here you go: {"embedQuery": "dreamlike heist", "rerankQuery": "find heists", "minScoreRatio": 0.97, "preferredType": "Documentary"}'
	handler, calls = llm_reply(content)
	rewriter = make_rewriter(handler)

	result = await rewriter.rewrite("dream heist")

	assert len(calls) == 1
	assert calls[0]["messages"][1]["content"] == "Rewrite: dream heist"
	assert result.embed_query == "dreamlike heist"
	assert result.rerank_query == "find heists"
	assert result.min_score_ratio == 0.9
	assert result.preferred_type == ANY_TYPE


@pytest.mark.asyncio
async def test_llm_missing_fields_fall_back_to_query():
	handler, _ = llm_reply('{"preferredType": "TV Show"}')
	rewriter = make_rewriter(handler)

	result = await rewriter.rewrite("office comedy")

	assert result.embed_query == "office comedy"
	assert result.rerank_query == "office comedy"
	assert result.min_score_ratio == pytest.approx(0.7)
	assert result.preferred_type == TV_SHOW


@pytest.mark.asyncio
async def test_results_are_cached_until_ttl():
	handler, calls = llm_reply('{"embedQuery": "a", "rerankQuery": "b", "minScoreRatio": 0.6}')
	clock = FakeClock()
	rewriter = make_rewriter(handler, clock=clock)

	first = await rewriter.rewrite("space opera")
	second = await rewriter.rewrite("space opera")
	assert first == second
	assert len(calls) == 1

	clock.now += 601
	await rewriter.rewrite("space opera")
	assert len(calls) == 2


@pytest.mark.asyncio
async def test_rate_limit_opens_circuit_for_three_minutes():
	handler, calls = llm_reply("", status=429)
	clock = FakeClock()
	rewriter = make_rewriter(handler, clock=clock)

	result = await rewriter.rewrite("mindfuck")
	assert result == heuristic_rewrite("mindfuck")
	assert rewriter.circuit_open
	assert len(calls) == 1

	await rewriter.rewrite("zombie comedy")
	assert len(calls) == 1

	clock.now += 181
	assert not rewriter.circuit_open
	await rewriter.rewrite("courtroom drama")
	assert len(calls) == 2


@pytest.mark.asyncio
async def test_unparsable_answer_falls_back_to_heuristic():
	handler, _ = llm_reply("I cannot help with that.")
	rewriter = make_rewriter(handler)
	assert await rewriter.rewrite("heist") == heuristic_rewrite("heist")


@pytest.mark.asyncio
async def test_server_error_falls_back_without_opening_circuit():
	handler, _ = llm_reply("", status=503)
	rewriter = make_rewriter(handler)
	assert await rewriter.rewrite("heist") == heuristic_rewrite("heist")
	assert not rewriter.circuit_open


@pytest.mark.asyncio
async def test_no_credential_or_empty_query_skips_network():
	handler, calls = llm_reply('{"embedQuery": "x"}')
	rewriter = make_rewriter(handler, api_key=None)
	assert await rewriter.rewrite("heist") == heuristic_rewrite("heist")

	keyed = make_rewriter(handler)
	empty = await keyed.rewrite("   ")
	assert empty.embed_query == ""
	assert calls == []


@pytest.mark.asyncio
async def test_rewrite_takes_normalized_text_as_is():
	rewriter = make_rewriter(llm_reply("")[0], api_key=None)
	result = await rewriter.rewrite("confess")
	assert result.embed_query == "confess"
	assert heuristic_rewrite("confessing").embed_query == "confess"


@pytest.mark.asyncio
async def test_malformed_choices_fall_back_to_heuristic():
	def handler(request):
		return httpx.Response(200, json={"choices": {"a": 1}})

	rewriter = make_rewriter(handler)
	assert await rewriter.rewrite("zzqx vibes") == heuristic_rewrite("zzqx vibes")
	assert not rewriter.circuit_open
