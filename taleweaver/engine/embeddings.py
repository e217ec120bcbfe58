"""
Embedding Service wrapper: text in, fixed-length vector out, never raises
"""

from typing import List, Optional

from langchain_core.embeddings import Embeddings

from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import RetryPolicy

logger = get_logger(__name__)


class EmbeddingService:
    """Best-effort embedding calls over a LangChain ``Embeddings`` backend"""

    def __init__(self, backend: Optional[Embeddings], policy: Optional[RetryPolicy] = None):
        self.backend = backend
        self.policy = policy or RetryPolicy.single_attempt()
        self.dimension: Optional[int] = None

    def is_available(self) -> bool:
        return self.backend is not None

    async def embed(self, text: str) -> Optional[List[float]]:
        """Vector for ``text`` or None when disabled, empty or failed."""
        if self.backend is None or not (text or "").strip():
            return None

        backend = self.backend
        try:
            vector = await self.policy.run(
                lambda: backend.aembed_query(text), label="embedding"
            )
        except Exception as e:
            logger.warning(f"[Embedding] Request failed: {e}")
            return None

        if not vector:
            return None
        vector = [float(v) for v in vector]
        if self.dimension is None:
            self.dimension = len(vector)
        elif len(vector) != self.dimension:
            logger.warning(
                f"[Embedding] Dimension changed from {self.dimension} to {len(vector)}; discarding"
            )
            return None
        return vector
