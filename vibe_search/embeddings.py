"""
Embedding generation module.
Provides query/document embeddings from the remote Voyage API or a local sentence-transformers
model, plus a bounded cache for query embeddings.
"""

import asyncio  # run the local model off the event loop
import time  # default monotonic clock for the cache
from typing import Any, Callable, Dict, List, Optional, Protocol  # type hints

import httpx  # async HTTP client
import numpy as np  # embedding matrices
from cachetools import TTLCache  # bounded, time-limited query cache
from loguru import logger  # console logger

from .exceptions import ProviderError, ProviderRateLimited  # upstream failures

VOYAGE_BASE = "https://api.voyageai.com/v1"
QUERY_EMBED_TTL_S = 60 * 60  # query vectors stay fresh for an hour
QUERY_EMBED_MAX = 200  # cache entries before eviction


class EmbeddingProvider(Protocol):
	model_name: str

	async def embed_query(self, text: str) -> List[float]: ...

	async def embed_documents(self, texts: List[str]) -> List[List[float]]: ...


async def voyage_post(client: httpx.AsyncClient, api_key: str, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
	"""POST to the Voyage API and return the decoded body, raising ProviderError on failure."""
	res = await client.post(
		f"{VOYAGE_BASE}/{path}",
		headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
		json=body,
	)
	if res.status_code == 429:
		raise ProviderRateLimited("voyage", 429)
	if not res.is_success:
		raise ProviderError("voyage", res.status_code)
	try:
		payload = res.json()
	except ValueError as e:
		raise ProviderError("voyage", res.status_code, f"Malformed Voyage response: {e}") from e
	if not isinstance(payload, dict):
		raise ProviderError("voyage", res.status_code, "Malformed Voyage response")
	return payload


class VoyageEmbeddingProvider:
	"""
	Remote embeddings through the Voyage REST API.
	Queries and documents use distinct input types so the asymmetric model aligns them.
	"""

	def __init__(self, api_key: str, model_name: str = "voyage-4-lite", http_client: Optional[httpx.AsyncClient] = None, timeout_s: float = 15.0):
		if not api_key:
			raise ValueError("VOYAGE_API_KEY environment variable is not set")
		self._api_key = api_key
		self.model_name = model_name
		self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
		logger.info(f"[Embeddings] Using Voyage model: {model_name}")

	async def _embed(self, texts: List[str], input_type: str) -> List[List[float]]:
		payload = await voyage_post(self._client, self._api_key, "embeddings", {
			"input": texts,
			"model": self.model_name,
			"input_type": input_type,
		})
		data = payload.get("data") or []
		if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
			raise ProviderError("voyage", 200, "Malformed Voyage embedding rows")
		try:
			rows = sorted(data, key=lambda d: int(d.get("index", 0)))  # keep input order
			return [[float(x) for x in row.get("embedding") or []] for row in rows]
		except (TypeError, ValueError) as e:
			raise ProviderError("voyage", 200, f"Malformed Voyage embedding rows: {e}") from e

	async def embed_query(self, text: str) -> List[float]:
		vectors = await self._embed([text], "query")
		return vectors[0] if vectors else []

	async def embed_documents(self, texts: List[str]) -> List[List[float]]:
		return await self._embed(texts, "document")

	async def aclose(self) -> None:
		await self._client.aclose()


class EmbeddingGenerator:
	"""
	Generates embeddings locally using sentence-transformers.
	"""

	def __init__(self, model_name: str = 'all-MiniLM-L6-v2'):
		"""
		Load a sentence-transformers model; downloads on first use then caches locally.
		"""
		from sentence_transformers import SentenceTransformer  # pre-trained embedding model

		logger.info(f"[Embeddings] Loading embedding model: {model_name}")  # log model selection
		self.model = SentenceTransformer(model_name)  # load model weights
		self.model_name = model_name  # save model id
		self.embedding_dimension = self.model.get_sentence_embedding_dimension()  # vector size
		logger.info(f"[Embeddings] Model ready. Embedding dimension: {self.embedding_dimension}")  # confirm

	def encode_documents(self, texts: List[str], batch_size: int = 32, show_progress: bool = True) -> np.ndarray:
		"""
		Encode catalog document texts into an L2-normalized matrix of shape (len(texts), dimension).
		"""
		if not texts:  # guard against accidental empty input
			raise ValueError("No documents provided for embedding generation")
		logger.info(f"[Embeddings] Generating embeddings for {len(texts)} documents (batch {batch_size})")  # progress
		embeddings = self.model.encode(
			texts,  # input documents
			batch_size=batch_size,  # batch size for efficiency
			show_progress_bar=show_progress,  # display progress bar
			convert_to_numpy=True,  # return as NumPy array
			normalize_embeddings=True,  # L2-normalize so cosine == dot product
		)
		logger.info(f"[Embeddings] Generated matrix with shape {embeddings.shape}")  # summary
		return embeddings

	def encode_query(self, query: str) -> np.ndarray:
		if not query or not query.strip():  # empty or whitespace only
			raise ValueError("Query cannot be empty")
		return self.model.encode(query.strip(), convert_to_numpy=True, normalize_embeddings=True)

	async def embed_query(self, text: str) -> List[float]:
		vector = await asyncio.to_thread(self.encode_query, text)
		return vector.tolist()

	async def embed_documents(self, texts: List[str]) -> List[List[float]]:
		matrix = await asyncio.to_thread(self.encode_documents, texts, 32, False)
		return matrix.tolist()

	def get_embedding_dimension(self) -> int:
		return self.embedding_dimension  # cached value


class CachedQueryEmbedder:
	"""
	Wraps a provider and caches query vectors per model and text.
	Failures and empty vectors degrade to an empty list and are never cached.
	"""

	def __init__(self, provider: EmbeddingProvider, clock: Callable[[], float] = time.monotonic, max_entries: int = QUERY_EMBED_MAX, ttl_s: float = QUERY_EMBED_TTL_S):
		self.provider = provider
		self._cache: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_s, timer=clock)

	async def embed_query(self, text: str) -> List[float]:
		key = f"{self.provider.model_name}::{text}"
		cached = self._cache.get(key)
		if cached is not None:
			return cached
		try:
			embedding = await self.provider.embed_query(text)
		except (ProviderError, httpx.HTTPError, ValueError) as e:
			logger.warning(f"[Embeddings] Query embedding failed: {e}")
			return []
		if embedding:
			self._cache[key] = embedding
		return embedding

	async def embed_documents(self, texts: List[str]) -> List[List[float]]:
		return await self.provider.embed_documents(texts)
