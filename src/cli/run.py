"""
Deduplicate a batch of candidate articles from a JSON (array) or JSONL file.

    python -m cli.run articles.json [--output result.json] [--no-cache]
"""
import argparse
import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.entities import CandidateArticle
from processing.arbitration import LLMStoryArbitrator
from processing.deduplicator import StoryDeduplicator
from services.background import BackgroundWriter
from services.config import Config, load_config
from services.database import Database
from services.embedding_cache import EmbeddingCache
from services.embeddings import EmbeddingProvider, OllamaEmbeddingClient
from services.llm import OllamaClient
from services.logging import setup_logging
from workflows.story_selection import StorySelectionPipeline

logger = logging.getLogger(__name__)


def load_articles(path: str) -> List[CandidateArticle]:
    """Read article records from a JSON array or a JSONL file."""
    text = Path(path).read_text(encoding="utf-8")
    stripped = text.lstrip()

    records: List[Dict[str, Any]]
    if stripped.startswith("["):
        records = json.loads(text)
    else:
        records = [json.loads(line) for line in text.splitlines() if line.strip()]

    return [CandidateArticle.from_dict(record) for record in records]


def build_pipeline(
    config: Config,
    writer: BackgroundWriter,
    use_cache: bool = True,
) -> StorySelectionPipeline:
    """Wire the Ollama-backed collaborators from config."""
    db_dir = os.path.dirname(config.DATABASE_PATH)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)

    db = Database(config.DATABASE_PATH)

    cache: Optional[EmbeddingCache] = None
    if use_cache and config.EMBEDDING_CACHE_ENABLED:
        cache = EmbeddingCache(db, model=config.EMBEDDING_MODEL, ttl_days=config.EMBEDDING_CACHE_TTL_DAYS)

    provider = EmbeddingProvider(
        backend=OllamaEmbeddingClient(
            base_url=config.OLLAMA_BASE_URL,
            model=config.EMBEDDING_MODEL,
            timeout=config.EMBEDDING_TIMEOUT_SECONDS,
        ),
        cache=cache,
        writer=writer,
        preview_chars=config.deduplication.content_preview_chars,
        cache_timeout=config.CACHE_TIMEOUT_SECONDS,
    )
    arbitrator = LLMStoryArbitrator(
        OllamaClient(
            base_url=config.OLLAMA_BASE_URL,
            model=config.OLLAMA_MODEL,
            timeout=config.ARBITRATION_TIMEOUT_SECONDS,
        )
    )
    deduplicator = StoryDeduplicator(provider, arbitrator, config.deduplication)
    return StorySelectionPipeline(deduplicator, database=db, settings=config.deduplication)


async def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deduplicate candidate news articles.")
    parser.add_argument("input", help="JSON array or JSONL file of article records")
    parser.add_argument("--output", help="Write the result JSON here instead of stdout")
    parser.add_argument("--no-cache", action="store_true", help="Disable the embedding cache")
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    start_time = time.perf_counter()
    config = load_config()
    setup_logging((args.log_level or config.LOG_LEVEL).upper())

    try:
        articles = load_articles(args.input)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Cannot read articles from {args.input}: {e}")
        return 2

    llm = OllamaClient(base_url=config.OLLAMA_BASE_URL, model=config.OLLAMA_MODEL)
    if not await llm.health_check():
        logger.warning(
            f"Ollama not reachable at {llm.base_url}, deduplication will fall back to the original articles"
        )

    writer = BackgroundWriter()
    pipeline = build_pipeline(config, writer, use_cache=not args.no_cache)

    result = await pipeline.run(articles, session_id=args.session_id)
    await writer.drain()

    output = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
    else:
        print(output)

    logger.info(f"Total time: {time.perf_counter() - start_time:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
