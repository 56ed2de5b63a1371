"""
Vector store module using FAISS.
Holds the title catalog in memory next to a FAISS inner-product index and exposes the corpus
operations the search engine needs: filtered fetch, count, nearest-neighbor search, and facets.
"""

# Import NumPy for typed arrays passed to FAISS
import numpy as np  # numeric arrays
# Import FAISS (Facebook AI Similarity Search) for fast nearest-neighbor search
import faiss  # vector index
# Pathlib for robust path handling when saving/loading
from pathlib import Path  # filesystem paths
# Typing hints for clarity of public API
from typing import Dict, List, Optional, Protocol, Sequence, Tuple  # type hints
# Pickle for persisting the catalog next to the index
import pickle  # simple serialization

from .genres import genre_regex  # raw-genre fallback matcher
from .models import SORT_TITLE_ASC, SORT_YEAR_ASC, Title, TitleFilter  # catalog records

# Console logging
from loguru import logger  # console logger


class CorpusStore(Protocol):
	"""Operations the search engine needs from the catalog store."""

	async def find(self, filters: TitleFilter, sort: str, skip: int, limit: int) -> List[Title]: ...

	async def count(self, filters: TitleFilter) -> int: ...

	async def vector_search(self, vector: Sequence[float], num_candidates: int, limit: int) -> List[Tuple[Title, float]]: ...

	async def get(self, show_id: str) -> Optional[Title]: ...

	async def facets(self) -> Tuple[List[str], List[str], List[int]]: ...


def matches_store_filter(title: Title, filters: TitleFilter) -> bool:
	"""
	Direct-fetch filter. Genre accepts either the precomputed canonical list or a regex over
	the raw genre string, so catalogs ingested without `genres_list` still filter correctly.
	"""
	if filters.type and title.type != filters.type:
		return False
	if filters.rating and title.rating != filters.rating:
		return False
	if filters.year and title.release_year != filters.year:
		return False
	if filters.genre:
		in_list = filters.genre in (title.genres_list or [])
		if not in_list and not genre_regex(filters.genre).search(title.genres or ""):
			return False
	return True


class FaissTitleStore:
	"""
	In-memory catalog backed by an exact FAISS inner-product index (cosine on normalized vectors).
	Row order doubles as the stable insertion id used for sort tiebreaks.
	"""

	def __init__(self, embedding_dimension: int, model_name: Optional[str] = None):
		self.embedding_dimension = embedding_dimension  # vector length
		self.model_name = model_name  # embedding model the vectors came from
		self.index = faiss.IndexFlatIP(embedding_dimension)  # inner product on unit vectors == cosine
		self.titles: List[Title] = []  # row -> title
		self.rows_by_id: Dict[str, int] = {}  # show_id -> row
		logger.info(f"[VectorStore] Initialized FAISS index | dim={embedding_dimension} | metric=cosine")

	def add_titles(self, titles: List[Title], embeddings: np.ndarray):
		"""
		Add titles and their embeddings (shape: len(titles) x dimension).
		"""
		# Validate count consistency between metadata and vectors
		if len(titles) != embeddings.shape[0]:
			raise ValueError(f"Number of titles ({len(titles)}) doesn't match number of embeddings ({embeddings.shape[0]})")
		# Validate embedding dimensionality
		if embeddings.shape[1] != self.embedding_dimension:
			raise ValueError(f"Embedding dimension ({embeddings.shape[1]}) doesn't match expected ({self.embedding_dimension})")

		vectors = np.ascontiguousarray(embeddings, dtype='float32')  # FAISS wants float32
		faiss.normalize_L2(vectors)  # cosine via inner product
		self.index.add(vectors)

		for title in titles:
			self.rows_by_id[title.show_id] = len(self.titles)
			self.titles.append(title)
		logger.info(f"[VectorStore] Added {len(titles)} titles | total in index: {self.index.ntotal}")

	def size(self) -> int:
		return self.index.ntotal

	async def get(self, show_id: str) -> Optional[Title]:
		row = self.rows_by_id.get(show_id)
		return self.titles[row] if row is not None else None

	async def count(self, filters: TitleFilter) -> int:
		return sum(1 for t in self.titles if matches_store_filter(t, filters))

	async def find(self, filters: TitleFilter, sort: str, skip: int, limit: int) -> List[Title]:
		"""Filtered fetch with title/year ordering and an insertion-id tiebreak, then skip/limit."""
		rows = [i for i, t in enumerate(self.titles) if matches_store_filter(t, filters)]
		if sort == SORT_TITLE_ASC:
			rows.sort(key=lambda i: (self.titles[i].title, i))
		elif sort == SORT_YEAR_ASC:
			rows.sort(key=lambda i: (_year_key(self.titles[i]), i))  # unknown years first
		else:
			rows.sort(key=lambda i: (_year_key(self.titles[i]), i), reverse=True)  # unknown years last
		return [self.titles[i] for i in rows[skip:skip + limit]]

	async def vector_search(self, vector: Sequence[float], num_candidates: int, limit: int) -> List[Tuple[Title, float]]:
		"""
		Nearest titles by cosine similarity, best first.
		The flat index is exact, so `num_candidates` only matters for approximate backends.
		"""
		if self.index.ntotal == 0 or limit <= 0:
			return []
		query = np.asarray(vector, dtype='float32').reshape(1, -1)
		if query.shape[1] != self.embedding_dimension:
			raise ValueError(f"Query embedding dimension ({query.shape[1]}) doesn't match expected ({self.embedding_dimension})")
		faiss.normalize_L2(query)
		scores, indices = self.index.search(query, min(limit, self.index.ntotal))
		results = []
		for score, idx in zip(scores[0], indices[0]):
			if idx < 0:  # -1 marks an empty slot
				continue
			results.append((self.titles[idx], float(score)))
		return results

	async def facets(self) -> Tuple[List[str], List[str], List[int]]:
		types = sorted({t.type for t in self.titles if t.type})
		ratings = sorted({t.rating for t in self.titles if t.rating})
		years = sorted({t.release_year for t in self.titles if t.release_year}, reverse=True)
		return types, ratings, years

	def save_index(self, filepath: str):
		"""
		Persist the FAISS index (.index) and the catalog (.pkl) next to it.
		"""
		filepath = Path(filepath)
		filepath.parent.mkdir(parents=True, exist_ok=True)
		index_path = filepath.with_suffix('.index')
		faiss.write_index(self.index, str(index_path))
		metadata_path = filepath.with_suffix('.pkl')
		with open(metadata_path, 'wb') as f:
			pickle.dump({
				'titles': self.titles,
				'embedding_dimension': self.embedding_dimension,
				'model_name': self.model_name,
			}, f)
		logger.info(f"[VectorStore] Saved index to {index_path} and metadata to {metadata_path}")

	@classmethod
	def load_index(cls, filepath: str) -> 'FaissTitleStore':
		filepath = Path(filepath)
		index_path = filepath.with_suffix('.index')
		metadata_path = filepath.with_suffix('.pkl')
		if not index_path.exists():
			raise FileNotFoundError(f"Index file not found: {index_path}")
		if not metadata_path.exists():
			raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

		with open(metadata_path, 'rb') as f:
			metadata = pickle.load(f)
		store = cls(embedding_dimension=metadata['embedding_dimension'], model_name=metadata.get('model_name'))
		store.index = faiss.read_index(str(index_path))
		store.titles = list(metadata['titles'])
		store.rows_by_id = {t.show_id: i for i, t in enumerate(store.titles)}
		logger.info(f"[VectorStore] Loaded index from {index_path} | total={store.index.ntotal}")
		return store

	@staticmethod
	def index_files_exist(base_path: str) -> bool:
		base = Path(base_path)
		return base.with_suffix('.index').exists() and base.with_suffix('.pkl').exists()


def _year_key(title: Title) -> float:
	return title.release_year if title.release_year is not None else float('-inf')
