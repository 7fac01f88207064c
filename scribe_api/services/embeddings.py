from __future__ import annotations

import os
import re
from functools import lru_cache
from typing import List, Optional

import numpy as np

from sentence_transformers import SentenceTransformer  # type: ignore

# Width of the pgvector columns on knowledge_documents and transcript_passages.
EMBED_DIM = 384

DEFAULT_EMBED_MODEL = (
    os.getenv("SCRIBE_EMBED_MODEL", "sentence-transformers/all-MiniLM-L6-v2").strip()
    or "sentence-transformers/all-MiniLM-L6-v2"
)

# Workers are CPU-only unless told otherwise.
DEFAULT_EMBED_DEVICE = (os.getenv("SCRIBE_EMBED_DEVICE", "cpu").strip().lower() or "cpu")

_WS = re.compile(r"\s+")


class EmbeddingDimensionError(Exception):
    pass


def _device(requested: str | None) -> str:
    d = (requested or DEFAULT_EMBED_DEVICE).strip().lower()
    return d if d in {"cpu", "mps", "cuda"} else "cpu"


@lru_cache(maxsize=4)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    """One model per (name, device) per worker process."""
    return SentenceTransformer(model_name, device=device)


def _model(model_name: str, device: str) -> SentenceTransformer:
    """
    Load and check the model's output width before any encoding: a model
    that does not fit the vector columns is refused up front rather than
    after a transcript's worth of compute.
    """
    model = _load_model(model_name, device)
    dim = model.get_sentence_embedding_dimension()
    if dim is not None and int(dim) != EMBED_DIM:
        raise EmbeddingDimensionError(f"model {model_name} produces dim={dim}; columns expect {EMBED_DIM}")
    return model


def prepare_text(text: str) -> str:
    # transcripts carry line breaks and double spaces from segment joins
    return _WS.sub(" ", text or "").strip()


def _encode(model: SentenceTransformer, texts: List[str], batch_size: int) -> np.ndarray:
    vecs = model.encode(
        texts,
        batch_size=batch_size,
        show_progress_bar=False,
        convert_to_numpy=True,
        normalize_embeddings=True,
    )
    if isinstance(vecs, list):
        vecs = np.array(vecs, dtype=np.float32)
    return vecs.astype(np.float32)


def embed_texts(
    texts: List[str],
    *,
    model_name: str = DEFAULT_EMBED_MODEL,
    device: Optional[str] = None,
    batch_size: int = 32,
) -> List[List[float]]:
    """
    Normalized embeddings for transcript text, one per input string, each
    EMBED_DIM wide. Blank inputs are refused since they would index nothing.
    An accelerator failure (RuntimeError) retries once on CPU.
    """
    if not texts:
        return []
    prepared = [prepare_text(t) for t in texts]
    if not all(prepared):
        raise ValueError("cannot embed blank text")

    dev = _device(device)
    try:
        vecs = _encode(_model(model_name, dev), prepared, batch_size)
    except RuntimeError:
        if dev == "cpu":
            raise
        vecs = _encode(_model(model_name, "cpu"), prepared, batch_size)

    if vecs.ndim != 2 or vecs.shape[1] != EMBED_DIM:
        raise EmbeddingDimensionError(f"model {model_name} produced shape {vecs.shape}, expected (n, {EMBED_DIM})")
    return vecs.tolist()
