"""Filesystem search through the Spotlight index."""

from fnmatch import fnmatch
from pathlib import PurePosixPath
from typing import Callable, Iterable, List, Optional

from loguru import logger

from ..automation import run_process
from ..models import FileResult, PRIORITIES, ResultKind, SearchResult
from .base import SourceProvider


MAX_RAW_QUERY_LENGTH = 500
_ALLOWED_PUNCTUATION = frozenset("-_.@")


def sanitize_file_query(query: Optional[str], max_length: int = 100) -> Optional[str]:
    """
    Reduce a query to letters, digits, whitespace and ``- _ . @``.

    Returns None when nothing usable is left, or the raw query is absurdly
    long. The result is safe to hand to the indexer as a single argument.
    """
    if not query or not isinstance(query, str):
        return None

    trimmed = query.strip()
    if not trimmed or len(trimmed) > MAX_RAW_QUERY_LENGTH:
        return None

    sanitized = ''.join(
        ch for ch in trimmed
        if ch.isalnum() or ch.isspace() or ch in _ALLOWED_PUNCTUATION
    )[:max_length].strip()

    return sanitized or None


def is_excluded(path: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        if fnmatch(path, pattern) or fnmatch(path, pattern.rstrip('/') + '/*'):
            return True
    return False


class FileSearchSource(SourceProvider):
    name = "files"
    kind = ResultKind.FILE

    def __init__(self,
                 runner: Callable = run_process,
                 exclusions: Callable[[], List[str]] = list,
                 query_timeout: float = 1.0,
                 result_cap: int = 100,
                 max_output_bytes: int = 10 * 1024 * 1024,
                 max_query_length: int = 100,
                 **kwargs):
        super().__init__(**kwargs)
        self._runner = runner
        self.exclusions = exclusions
        self.query_timeout = query_timeout
        self.result_cap = result_cap
        self.max_output_bytes = max_output_bytes
        self.max_query_length = max_query_length

    async def _fetch(self, query: str) -> List[SearchResult]:
        sanitized = sanitize_file_query(query, self.max_query_length)
        if sanitized is None:
            return []

        output = await self._runner(
            ["mdfind", "-name", sanitized, "-limit", str(self.result_cap)],
            timeout=self.query_timeout,
            max_output_bytes=self.max_output_bytes
        )

        lines = output.stdout.split('\n')
        if output.truncated:
            logger.warning("File search returned too many results, using partial data")
            # The last line was cut mid-path
            lines = lines[:-1]

        patterns = list(self.exclusions() or [])
        results: List[SearchResult] = []
        excluded = 0
        for line in lines:
            path = line.strip()
            if not path:
                continue
            if patterns and is_excluded(path, patterns):
                excluded += 1
                continue
            results.append(FileResult(
                kind=ResultKind.FILE,
                display_name=PurePosixPath(path).name,
                priority=PRIORITIES[ResultKind.FILE],
                path=path
            ))
            if len(results) >= self.result_cap:
                break

        if excluded:
            logger.debug(f"Excluded {excluded} file results by pattern")
        return results
