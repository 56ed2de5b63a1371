"""
Cross-encoder reranking.
Scores (query, document) pairs with the remote Voyage rerank API or a local cross-encoder model.
"""

import asyncio  # run the local model off the event loop
from dataclasses import dataclass  # result records
from typing import List, Optional, Protocol  # type hints

import httpx  # async HTTP client
from loguru import logger  # console logger

from .embeddings import voyage_post  # shared Voyage request helper
from .exceptions import ProviderError  # malformed responses


@dataclass(frozen=True)
class RerankHit:
	index: int  # position in the submitted document list
	relevance_score: float


class RerankProvider(Protocol):
	async def rerank(self, query: str, documents: List[str], top_k: int) -> List[RerankHit]: ...


class VoyageReranker:
	def __init__(self, api_key: str, model_name: str = "rerank-2.5-lite", http_client: Optional[httpx.AsyncClient] = None, timeout_s: float = 15.0):
		if not api_key:
			raise ValueError("VOYAGE_API_KEY environment variable is not set")
		self._api_key = api_key
		self.model_name = model_name
		self._client = http_client or httpx.AsyncClient(timeout=timeout_s)

	async def rerank(self, query: str, documents: List[str], top_k: int) -> List[RerankHit]:
		payload = await voyage_post(self._client, self._api_key, "rerank", {
			"model": self.model_name,
			"query": query,
			"documents": documents,
			"top_k": top_k,
		})
		hits = []
		for row in payload.get("data") or []:
			try:
				hits.append(RerankHit(index=int(row["index"]), relevance_score=float(row["relevance_score"])))
			except (KeyError, TypeError, ValueError) as e:
				raise ProviderError("voyage", 200, f"Malformed rerank row: {row!r}") from e
		logger.debug(f"[Reranker] Voyage returned {len(hits)} hits for {len(documents)} documents")
		return hits

	async def aclose(self) -> None:
		await self._client.aclose()


class CrossEncoderReranker:
	"""
	Local reranking with a sentence-transformers CrossEncoder.
	"""

	def __init__(self, model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"):
		from sentence_transformers import CrossEncoder  # pairwise relevance model

		logger.info(f"[Reranker] Loading cross-encoder: {model_name}")
		self.model = CrossEncoder(model_name)
		self.model_name = model_name

	def _score(self, query: str, documents: List[str], top_k: int) -> List[RerankHit]:
		scores = self.model.predict([(query, doc) for doc in documents])  # one score per pair
		order = sorted(range(len(documents)), key=lambda i: float(scores[i]), reverse=True)
		return [RerankHit(index=i, relevance_score=float(scores[i])) for i in order[:top_k]]

	async def rerank(self, query: str, documents: List[str], top_k: int) -> List[RerankHit]:
		if not documents:
			return []
		return await asyncio.to_thread(self._score, query, documents, top_k)
