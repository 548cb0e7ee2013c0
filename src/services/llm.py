import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, TypeVar

from langchain_ollama import ChatOllama
from langchain_core.messages import HumanMessage
import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_ollama_url(base_url: str) -> str:
    """
    Ollama's native API lives at the root, not at the OpenAI-compatible /v1.
    """
    if base_url.endswith("/v1"):
        base_url = base_url[:-3]
    elif base_url.endswith("/v1/"):
        base_url = base_url[:-4]
    return base_url.rstrip('/')


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.ReadError, ConnectionError)):
        return True
    error_msg = str(exc).lower()
    return "connection" in error_msg or "connect" in error_msg


async def invoke_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    max_retries: int,
    retry_delay: float,
    label: str,
) -> T:
    """
    Await call() with a timeout, retrying timeouts and connection failures.
    Other errors are raised immediately.
    """
    last_exception: Exception | None = None

    for attempt in range(1, max_retries + 1):
        try:
            return await asyncio.wait_for(call(), timeout=timeout)

        except asyncio.TimeoutError:
            last_exception = TimeoutError(f"Request timed out after {timeout}s")
            logger.warning(f"{label} attempt {attempt}/{max_retries}: Timeout, retrying...")

        except Exception as e:
            if not _is_connection_error(e):
                raise
            last_exception = e
            logger.warning(f"{label} attempt {attempt}/{max_retries}: Connection error - {e}")

        if attempt < max_retries:
            await asyncio.sleep(retry_delay * attempt)

    raise last_exception or Exception("All connection attempts failed")


class OllamaClient:
    """
    LangChain-based Ollama chat client with retry logic.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        num_predict: int = 10,
    ):
        self.base_url = normalize_ollama_url(base_url)
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        self.llm = ChatOllama(
            base_url=self.base_url,
            model=model,
            temperature=temperature,
            num_predict=num_predict,  # verdicts are a single word
        )

    async def _invoke(self, messages: List[HumanMessage]) -> Any:
        return await invoke_with_retry(
            lambda: self.llm.ainvoke(messages),
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            label=f"LLM {self.model}",
        )

    async def evaluate(self, prompt: str) -> Dict[str, Any]:
        """
        Send a prompt and return the reply with latency metadata.
        """
        start = time.time()

        response = await self._invoke([HumanMessage(content=prompt)])

        latency_ms = int((time.time() - start) * 1000)

        return {
            "raw": response,
            "content": response.content,
            "latency_ms": latency_ms,
        }

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False
