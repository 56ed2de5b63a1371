"""
Build and persist the title index.

This script:
1) Loads the catalog (CSV or JSONL, see DATA_PATH)
2) Embeds each title's document text (Voyage when VOYAGE_API_KEY is set, else sentence-transformers)
3) Builds a FAISS index
4) Saves the index and metadata next to INDEX_PATH

Usage:
    python -m scripts.build_index [--limit N] [--local]

The API loads this saved index at startup when present.
"""

import argparse  # command-line flags
import asyncio  # drive the async Voyage client
import time  # measure step timings
from typing import List  # type hints

import numpy as np  # embedding matrix
from loguru import logger  # console logging

from vibe_search.config import configure_logging, settings  # env-backed settings
from vibe_search.data_loader import DataLoader, build_document_text  # catalog ingestion
from vibe_search.embeddings import EmbeddingGenerator, VoyageEmbeddingProvider  # embedding backends
from vibe_search.vector_store import FaissTitleStore  # FAISS index helper

VOYAGE_BATCH = 128


async def embed_with_voyage(texts: List[str]) -> np.ndarray:
	provider = VoyageEmbeddingProvider(settings.VOYAGE_API_KEY, settings.EMBEDDING_MODEL, timeout_s=settings.HTTP_TIMEOUT_S)
	vectors: List[List[float]] = []
	try:
		for start in range(0, len(texts), VOYAGE_BATCH):
			vectors.extend(await provider.embed_documents(texts[start:start + VOYAGE_BATCH]))
			logger.info(f"[Build] Embedded {len(vectors)}/{len(texts)} documents")
	finally:
		await provider.aclose()
	return np.asarray(vectors, dtype='float32')


def main():
	parser = argparse.ArgumentParser(description="Build the FAISS title index")
	parser.add_argument("--limit", type=int, default=None, help="only index the first N titles")
	parser.add_argument("--local", action="store_true", help="use the local sentence-transformers model")
	args = parser.parse_args()

	configure_logging(settings.LOG_LEVEL)
	logger.info("=" * 60)
	logger.info("Build Title Index")
	logger.info("=" * 60)

	# 1) Load data
	logger.info("[1/4] Loading titles...")
	titles = DataLoader().load(settings.DATA_PATH, limit=args.limit)
	logger.info(f"[OK] Loaded {len(titles)} titles")

	# 2) Generate embeddings
	logger.info("[2/4] Generating embeddings...")
	t0 = time.time()
	texts = [build_document_text(t) for t in titles]
	if settings.VOYAGE_API_KEY and not args.local:
		model_name = settings.EMBEDDING_MODEL
		embeddings = asyncio.run(embed_with_voyage(texts))
	else:
		generator = EmbeddingGenerator(settings.LOCAL_EMBEDDING_MODEL)
		model_name = generator.model_name
		embeddings = generator.encode_documents(texts, batch_size=32, show_progress=True)
	logger.info(f"[OK] Embeddings generated in {time.time() - t0:.2f}s; shape={embeddings.shape}")

	# 3) Build FAISS index
	logger.info("[3/4] Building FAISS index...")
	store = FaissTitleStore(embeddings.shape[1], model_name=model_name)
	store.add_titles(titles, embeddings)
	logger.info(f"[OK] Index built with {store.size()} vectors")

	# 4) Save index
	logger.info("[4/4] Saving index and metadata...")
	store.save_index(settings.INDEX_PATH)
	logger.info("[OK] Saved.")
	logger.info("=" * 60)


if __name__ == '__main__':
	main()
