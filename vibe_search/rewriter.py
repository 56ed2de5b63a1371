"""
Query rewriting.
Expands a normalized query into an embedding query, a rerank instruction, a score-cutoff ratio,
and a preferred title type. A deterministic rule table always runs; an optional remote LLM call
can enrich the result and falls back to the rule output on any failure.
"""

import json  # parse the LLM's JSON answer
import math  # finite checks on numeric fields
import re  # rule matching
import time  # default monotonic clock
from dataclasses import dataclass, field  # rule records
from typing import Any, Callable, Dict, List, Optional  # type hints

import httpx  # async HTTP client
from cachetools import TTLCache  # time-bounded rewrite cache
from loguru import logger  # console logger

from .exceptions import ProviderError, ProviderRateLimited  # upstream failures
from .models import ANY_TYPE, MOVIE, TV_SHOW, RewriteResult  # rewrite output
from .normalizer import normalize_query  # shared cleanup

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
CACHE_TTL_S = 10 * 60  # rewrite freshness window
CACHE_MAX_ENTRIES = 1024
RATE_LIMIT_COOLDOWN_S = 3 * 60  # circuit-breaker window after a 429
MAX_EMBED_WORDS = 25
MIN_RATIO = 0.55
MAX_RATIO = 0.9

RE_MOVIE_HINT = re.compile(r"\b(movie|film|films|cinema)\b")
RE_TV_HINT = re.compile(r"\b(tv|show|shows|series|episodes)\b")

SYSTEM_PROMPT = " ".join([
	"You rewrite user queries for a Netflix-style semantic movie/TV search.",
	"Return a JSON object with keys: embedQuery, rerankQuery, minScoreRatio, preferredType.",
	'preferredType must be "Movie", "TV Show", or "Any".',
	"minScoreRatio should be between 0.55 and 0.9.",
])


@dataclass(frozen=True)
class RewriteRule:
	match: re.Pattern
	add: List[str] = field(default_factory=list)  # expansion terms
	preferred_type: Optional[str] = None  # type hint when the query itself has none
	ratio: Optional[float] = None  # cutoff ceiling offered by this rule


REWRITE_RULES: List[RewriteRule] = [
	RewriteRule(re.compile(r"\bmind\s*fuck\b|\bmindfuck\b"), ["mind-bending", "plot twist", "reality-bending", "psychological thriller", "time loop"], ratio=0.6),
	RewriteRule(re.compile(r"\bmind[-\s]?bending\b|\breality[-\s]?bending\b|\bplot\s*twist\b"), ["plot twist", "psychological thriller", "mystery", "unreliable reality"], ratio=0.62),
	RewriteRule(re.compile(r"\bpsychological\b"), ["mind games", "thriller", "suspense"], ratio=0.72),
	RewriteRule(re.compile(r"\bthriller\b|\bsuspense\b"), ["thriller", "suspense", "mystery"], ratio=0.7),
	RewriteRule(re.compile(r"\brevenge\b|\bvengeance\b|\bpayback\b"), ["revenge", "vengeance", "payback"], ratio=0.72),
	RewriteRule(re.compile(r"\btime\s*travel\b|\btime\s*loop\b|\btimeloop\b"), ["time travel", "time loop", "alternate timeline"], ratio=0.72),
	RewriteRule(re.compile(r"\bzombie\b|\bundead\b"), ["zombie", "undead", "apocalypse"], ratio=0.72),
	RewriteRule(re.compile(r"\bromcom\b|\bromantic\s+comedy\b"), ["romantic comedy", "romance", "comedy"], ratio=0.72),
	RewriteRule(re.compile(r"\bslow\s*burn\b"), ["slow burn", "romance", "character-driven"], ratio=0.72),
	RewriteRule(re.compile(r"\bheist\b|\brobbery\b|\bcon\s*artist\b"), ["heist", "robbery", "con artists", "caper"], ratio=0.72),
	RewriteRule(re.compile(r"\bserial\s+killer\b|\bmurder\b"), ["serial killer", "murder investigation", "crime thriller"], ratio=0.72),
	RewriteRule(re.compile(r"\bcourt(room)?\b|\btrial\b|\blegal\b"), ["courtroom", "trial", "legal drama"], ratio=0.74),
	RewriteRule(re.compile(r"\bstand[- ]?up\b|\bcomedy\s+special\b"), ["stand-up comedy", "comedy special"], ratio=0.75),
	RewriteRule(re.compile(r"\bcooking\b|\bchef\b|\bfood\b"), ["cooking", "chef", "culinary"], ratio=0.75),
	RewriteRule(re.compile(r"\bhorror\b|\bscary\b"), ["horror", "scary", "supernatural"], ratio=0.75),
	RewriteRule(re.compile(r"\bsci[- ]?fi\b|\bscience\s+fiction\b"), ["sci-fi", "science fiction", "futuristic"], ratio=0.75),
	RewriteRule(re.compile(r"\bk[-\s]?drama\b|\bkorean\s+drama\b"), ["kdrama", "korean drama", "romance"], preferred_type=TV_SHOW, ratio=0.7),
]


def clamp(value: float, low: float, high: float) -> float:
	"""Clamp to [low, high]; non-finite input maps to low."""
	if value is None or not math.isfinite(value):
		return low
	return max(low, min(high, value))


def infer_preferred_type(query: str) -> str:
	lower = query.lower()
	if RE_MOVIE_HINT.search(lower):
		return MOVIE
	if RE_TV_HINT.search(lower):
		return TV_SHOW
	return ANY_TYPE


def default_ratio(word_count: int) -> float:
	if word_count <= 2:
		return 0.65
	if word_count <= 5:
		return 0.7
	return 0.75


def build_rerank_query(embed_query: str) -> str:
	return f"Find titles that match: {embed_query}. Prefer plot/theme matches over literal keyword overlap."


def heuristic_rewrite(raw: str, rules: Optional[List[RewriteRule]] = None) -> RewriteResult:
	"""Normalize raw text, then apply the rule table."""
	return heuristic_from_normalized(normalize_query(raw), rules)


def heuristic_from_normalized(q: str, rules: Optional[List[RewriteRule]] = None) -> RewriteResult:
	"""
	Rule-table rewrite of an already-normalized query. Matching rules union their expansion terms
	and the tightest ratio wins; with no match the ratio follows the query's word count.
	"""
	lower = q.lower()
	inferred = infer_preferred_type(q)
	base_words = q.split()

	added: List[str] = []
	type_hint = inferred
	ratio: Optional[float] = None
	for rule in (rules if rules is not None else REWRITE_RULES):
		if not rule.match.search(lower):
			continue
		added.extend(rule.add)
		if rule.preferred_type and inferred == ANY_TYPE:  # explicit wording beats rule hints
			type_hint = rule.preferred_type
		if rule.ratio is not None:
			ratio = min(ratio if ratio is not None else 1.0, rule.ratio)

	embed_query = " ".join(" ".join(base_words + added).split()[:MAX_EMBED_WORDS])
	return RewriteResult(
		embed_query=embed_query,
		rerank_query=build_rerank_query(embed_query),
		min_score_ratio=clamp(ratio if ratio is not None else default_ratio(len(base_words)), MIN_RATIO, MAX_RATIO),
		preferred_type=type_hint,
	)


def extract_json(text: str) -> Optional[Dict[str, Any]]:
	"""Parse the outermost {...} span of an LLM answer, or None."""
	start = text.find("{")
	end = text.rfind("}")
	if start < 0 or end <= start:
		return None
	try:
		parsed = json.loads(text[start:end + 1])
	except ValueError:
		return None
	return parsed if isinstance(parsed, dict) else None


class QueryRewriter:
	"""
	Cached query rewriting with an optional OpenRouter enrichment call.
	One instance owns its cache and circuit-breaker state.
	"""

	def __init__(
		self,
		api_key: Callable[[], Optional[str]],
		model: str = "openai/gpt-oss-20b:free",
		http_client: Optional[httpx.AsyncClient] = None,
		clock: Callable[[], float] = time.monotonic,
		timeout_s: float = 15.0,
	):
		self._api_key = api_key  # re-read on every miss
		self.model = model
		self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
		self._clock = clock
		self._cache: TTLCache = TTLCache(maxsize=CACHE_MAX_ENTRIES, ttl=CACHE_TTL_S, timer=clock)
		self._blocked_until = 0.0  # provider circuit breaker

	@property
	def circuit_open(self) -> bool:
		return self._clock() < self._blocked_until

	async def rewrite(self, normalized: str) -> RewriteResult:
		"""Rewrite a normalized query; empty input never touches cache or network."""
		q = (normalized or "").strip()
		if not q:
			return heuristic_from_normalized(q)

		cached = self._cache.get(q)
		if cached is not None:
			logger.debug(f"[Rewriter] Cache hit for '{q}'")
			return cached

		fallback = heuristic_from_normalized(q)
		value = fallback
		api_key = self._api_key()
		if not api_key:
			logger.debug(f"[Rewriter] No rewrite credential, heuristic only for '{q}'")
		elif self.circuit_open:
			logger.debug(f"[Rewriter] Provider circuit open, heuristic only for '{q}'")
		else:
			try:
				value = await self._llm_rewrite(q, api_key)
				logger.info(f"[Rewriter] LLM rewrite '{q}' -> '{value.embed_query}' (ratio={value.min_score_ratio:.2f}, type={value.preferred_type})")
			except (ProviderError, httpx.HTTPError, ValueError) as e:
				logger.warning(f"[Rewriter] LLM rewrite failed, using heuristic: {e}")
				value = fallback

		self._cache[q] = value
		return value

	async def _llm_rewrite(self, q: str, api_key: str) -> RewriteResult:
		body = {
			"model": self.model,
			"temperature": 0.2,
			"messages": [
				{"role": "system", "content": SYSTEM_PROMPT},
				{"role": "user", "content": f"Rewrite: {q}"},
			],
		}
		res = await self._client.post(
			OPENROUTER_URL,
			headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
			json=body,
		)
		if res.status_code == 429:
			self._blocked_until = self._clock() + RATE_LIMIT_COOLDOWN_S  # trip the breaker
			raise ProviderRateLimited("openrouter", 429)
		if not res.is_success:
			raise ProviderError("openrouter", res.status_code)

		payload = res.json()
		content = ""
		choices = payload.get("choices") if isinstance(payload, dict) else None
		if isinstance(choices, list) and choices:
			first = choices[0]
			message = first.get("message") if isinstance(first, dict) else None
			if isinstance(message, dict):
				content = str(message.get("content") or "")
		parsed = extract_json(content)
		if parsed is None:
			raise ProviderError("openrouter", res.status_code, "Could not parse rewrite response")

		embed_query = parsed.get("embedQuery")
		rerank_query = parsed.get("rerankQuery")
		preferred = parsed.get("preferredType")
		return RewriteResult(
			embed_query=str(q if embed_query is None else embed_query),
			rerank_query=str(q if rerank_query is None else rerank_query),
			min_score_ratio=clamp(_to_float(parsed.get("minScoreRatio", 0.7)), MIN_RATIO, MAX_RATIO),
			preferred_type=preferred if preferred in (MOVIE, TV_SHOW) else ANY_TYPE,
		)

	async def aclose(self) -> None:
		await self._client.aclose()


def _to_float(value: Any) -> float:
	if value is None:
		return 0.7
	try:
		return float(value)
	except (TypeError, ValueError):
		return float("nan")
