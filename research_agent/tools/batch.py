"""
Bounded fan-out for batch tool work.

`gather_bounded` runs a worker over a list of items in waves of at most
`concurrency` tasks, waiting for each wave before starting the next.
Every item gets a `BatchItem` back, in input order, whether its worker
succeeded or failed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar
from urllib.parse import urlparse

import requests

from research_agent.core.cancellation import CancellationToken
from research_agent.errors import ExecutionError
from research_agent.tools.base import Tool, ToolCategory
from research_agent.tools.files import resolve_in_root

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 3


@dataclass
class BatchItem(Generic[T, R]):
    index: int
    item: T
    value: Optional[R] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel: Optional[CancellationToken] = None,
) -> List[BatchItem[T, R]]:
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    pending = list(items)
    results: List[BatchItem[T, R]] = []
    for start in range(0, len(pending), concurrency):
        if cancel is not None:
            cancel.raise_if_cancelled()
        wave = pending[start:start + concurrency]
        logger.debug("batch wave %d: %d items", start // concurrency, len(wave))
        outcomes = await asyncio.gather(*(worker(item) for item in wave), return_exceptions=True)
        for offset, (item, outcome) in enumerate(zip(wave, outcomes)):
            index = start + offset
            if isinstance(outcome, BaseException):
                results.append(BatchItem(index, item, error=str(outcome) or type(outcome).__name__))
            else:
                results.append(BatchItem(index, item, value=outcome))
    return results


def _filename_for(url: str, index: int) -> str:
    """File name for the `index`-th URL; the index prefix keeps names unique within a batch."""
    name = os.path.basename(urlparse(url).path) or "download"
    return f"{index}-" + re.sub(r"[^A-Za-z0-9._-]", "_", name)


class BatchDownloadTool(Tool):
    """
    Download several URLs into the workspace, a few at a time.

    Tool input schema:
    {
        "urls": ["https://example.org/paper.pdf", ...],
        "directory": "downloads"
    }
    """

    def __init__(self, root_dir: str, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        super().__init__(
            name="batch_download",
            description="Download a list of URLs into a workspace directory.",
            category=ToolCategory.RESEARCH,
            input_schema={
                "type": "object",
                "properties": {
                    "urls": {"type": "array", "items": {"type": "string"}},
                    "directory": {"type": "string"},
                },
                "required": ["urls"],
            },
        )
        self.root_dir = os.path.abspath(root_dir)
        self.concurrency = concurrency

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "BatchDownloadTool":
        root_dir = cfg.get("root_dir", "workspace")
        os.makedirs(root_dir, exist_ok=True)
        return cls(root_dir=root_dir, concurrency=int(cfg.get("concurrency", DEFAULT_CONCURRENCY)))

    def validate(self, params: Dict[str, Any]) -> bool:
        if not super().validate(params):
            return False
        urls = params["urls"]
        return bool(urls) and all(isinstance(u, str) and u for u in urls)

    async def execute(
        self, params: Dict[str, Any], cancel: Optional[CancellationToken] = None
    ) -> Dict[str, Any]:
        target_dir = resolve_in_root(self.root_dir, params.get("directory") or "downloads")
        urls: List[str] = list(params["urls"])

        async def download(entry: Any) -> str:
            index, url = entry
            path = os.path.join(target_dir, _filename_for(url, index))
            await asyncio.to_thread(_download, url, path)
            return os.path.relpath(path, self.root_dir)

        items = await gather_bounded(
            list(enumerate(urls)), download, self.concurrency, cancel
        )
        return {
            "downloaded": [{"url": urls[i.index], "path": i.value} for i in items if i.ok],
            "failed": [{"url": urls[i.index], "error": i.error} for i in items if not i.ok],
        }


def _download(url: str, path: str) -> None:
    try:
        resp = requests.get(url, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ExecutionError(f"download of {url} failed: {exc}") from exc
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(resp.content)
