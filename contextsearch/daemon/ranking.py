"""Ranking: calculator and bang short-circuits, fuzzy scoring, merge.

Scores run from 0 (best) to 1 (worst). Fuzzy scoring is approximate
substring matching: the fewest edits that turn the query into some
substring of a field, normalised by query length and nudged by a small
penalty for lower-weighted fields.
"""

import ast
import math
import operator
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import quote

from loguru import logger

from .config import RankingConfig, WebEngine, default_bangs
from .models import (
    CalculatorResult,
    FUZZY_KINDS,
    PRIORITIES,
    ResultKind,
    SearchResult,
    WebSearchResult,
)


MATH_EXPRESSION = re.compile(r'^[\d\s+\-*/().%^]+$')
MATH_OPERATOR = re.compile(r'[+\-*/^%]')
BANG_QUERY = re.compile(r'^([A-Za-z0-9]+)\s+(.+)$')

MAX_EXPONENT = 1000
MAX_EXPRESSION_LENGTH = 200

FALLBACK_ENGINE = WebEngine(name="Google", url="https://google.com/search?q=", icon="🔍")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: math.fmod,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class _UnsupportedExpression(ValueError):
    pass


def _eval_node(node: ast.AST):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise _UnsupportedExpression(repr(node.value))
        return node.value

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))

    if isinstance(node, ast.BinOp) and (isinstance(node.op, ast.Pow) or type(node.op) in _BINARY_OPS):
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow):
            if abs(right) > MAX_EXPONENT:
                raise _UnsupportedExpression("exponent too large")
            # Float power overflows instead of building huge integers
            return float(left) ** float(right)
        return _BINARY_OPS[type(node.op)](left, right)

    raise _UnsupportedExpression(type(node).__name__)


def evaluate_expression(text: str) -> Optional[float]:
    """
    Evaluate a pure arithmetic query.

    Only digits, whitespace and ``+ - * / ( ) . % ^`` are accepted and at
    least one operator must appear; ``^`` is exponentiation. The expression
    is walked as a syntax tree, never executed.

    Returns:
        The value rounded to 6 decimals, or None when the text is not a
        valid, finite arithmetic expression.
    """
    if not text or len(text) > MAX_EXPRESSION_LENGTH:
        return None
    if not MATH_EXPRESSION.match(text) or not MATH_OPERATOR.search(text):
        return None

    try:
        tree = ast.parse(text.strip().replace('^', '**'), mode='eval')
        value = float(_eval_node(tree))
    except (SyntaxError, _UnsupportedExpression, ZeroDivisionError,
            OverflowError, ValueError, TypeError, RecursionError, MemoryError):
        return None

    if not math.isfinite(value):
        return None
    return round(value, 6)


def format_number(value: float) -> str:
    if float(value).is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(float(value))


def encode_uri_component(value: str) -> str:
    return quote(value, safe="-_.!~*'()")


def parse_bang(query: str, bangs: Mapping[str, WebEngine]) -> Optional[WebSearchResult]:
    """Route ``<prefix> <terms>`` to a configured engine, if the prefix is known."""
    match = BANG_QUERY.match(query)
    if not match:
        return None

    engine = bangs.get(match.group(1).lower())
    if engine is None:
        return None

    term = match.group(2).strip()
    return WebSearchResult(
        kind=ResultKind.WEB_SEARCH,
        display_name=f'Search {engine.name} for "{term}"',
        score=0.0,
        priority=10,
        icon=engine.icon,
        target_url=engine.url + encode_uri_component(term),
        engine_name=engine.name
    )


def fallback_search(query: str) -> WebSearchResult:
    return WebSearchResult(
        kind=ResultKind.WEB_SEARCH,
        display_name=f'Search {FALLBACK_ENGINE.name} for "{query}"',
        score=1.0,
        priority=PRIORITIES[ResultKind.WEB_SEARCH],
        icon=FALLBACK_ENGINE.icon,
        target_url=FALLBACK_ENGINE.url + encode_uri_component(query),
        engine_name=FALLBACK_ENGINE.name
    )


def approximate_distance(pattern: str, text: str, max_errors: int) -> Optional[int]:
    """
    Fewest edits turning ``pattern`` into any substring of ``text``.

    Bit-parallel (Wu-Manber) approximate matching. Bit i of ``states[d]``
    is set when ``pattern[:i + 1]`` matches a suffix of the text read so far
    with at most d edits.

    Returns:
        The edit count, or None when it exceeds ``max_errors``.
    """
    m = len(pattern)
    if m == 0:
        return 0
    if pattern in text:
        return 0
    if max_errors <= 0 or not text:
        return None

    masks: Dict[str, int] = {}
    for i, ch in enumerate(pattern):
        masks[ch] = masks.get(ch, 0) | (1 << i)

    full = (1 << m) - 1
    accept = 1 << (m - 1)
    states = [(1 << d) - 1 for d in range(max_errors + 1)]
    best: Optional[int] = None

    for ch in text:
        mask = masks.get(ch, 0)
        previous_old = states[0]
        states[0] = ((states[0] << 1) | 1) & mask
        for d in range(1, max_errors + 1):
            old = states[d]
            states[d] = (
                (((old << 1) | 1) & mask)
                | previous_old
                | ((previous_old | states[d - 1]) << 1)
                | 1
            ) & full
            previous_old = old

        limit = max_errors if best is None else best - 1
        for d in range(limit + 1):
            if states[d] & accept:
                best = d
                break
        if best == 1:
            break

    return best


def fuzzy_score(query: str,
                fields: Mapping[str, str],
                weights: Mapping[str, float],
                match_threshold: float = 0.2,
                field_penalty: float = 0.1) -> Optional[float]:
    """
    Weighted multi-field score of a candidate, or None when no field matches.

    Case-insensitive and location-agnostic. The best matching field wins.
    """
    needle = query.lower()
    if not needle or not weights:
        return None

    max_errors = int(len(needle) * match_threshold)
    max_weight = max(weights.values())
    best: Optional[float] = None

    for field_name, value in fields.items():
        weight = weights.get(field_name)
        if not value or not weight:
            continue
        errors = approximate_distance(needle, value.lower(), max_errors)
        if errors is None:
            continue
        score = errors / len(needle) + (1 - weight / max_weight) * field_penalty
        if best is None or score < best:
            best = score

    if best is None:
        return None
    return min(max(best, 0.0), 1.0)


def order_by_tie_band(results: Sequence[SearchResult], tie_band: float) -> List[SearchResult]:
    """
    Sort by score, letting priority decide among near-equal scores.

    Results are grouped greedily into bands anchored at each band's lowest
    score; inside a band higher priority comes first.
    """
    bands: List[List[SearchResult]] = []
    for result in sorted(results, key=lambda r: r.score):
        if bands and result.score - bands[-1][0].score < tie_band:
            bands[-1].append(result)
        else:
            bands.append([result])

    ordered: List[SearchResult] = []
    for band in bands:
        ordered.extend(sorted(
            band,
            key=lambda r: (-r.priority, r.score, r.display_name.lower())
        ))
    return ordered


class Ranker:
    """Merges per-source candidates into one bounded, ordered list."""

    def __init__(self,
                 config: Optional[RankingConfig] = None,
                 bangs: Optional[Mapping[str, WebEngine]] = None):
        self.config = config or RankingConfig()
        self.bangs: Dict[str, WebEngine] = {**default_bangs(), **(bangs or {})}

    def short_circuit(self, query: str) -> Optional[SearchResult]:
        """Calculator or bang result that bypasses fuzzy ranking entirely."""
        value = evaluate_expression(query)
        if value is not None:
            return CalculatorResult(
                kind=ResultKind.CALCULATOR,
                display_name=f"= {format_number(value)}",
                score=0.0,
                priority=PRIORITIES[ResultKind.CALCULATOR],
                icon="🧮",
                expression=query,
                numeric_result=value
            )
        return parse_bang(query, self.bangs)

    def score(self, query: str, candidate: SearchResult) -> Optional[float]:
        return fuzzy_score(
            query,
            candidate.search_fields(),
            self.config.field_weights,
            self.config.match_threshold,
            self.config.field_penalty
        )

    def rank(self, query: str, candidates: Iterable[SearchResult]) -> List[SearchResult]:
        """Fuzzy-score candidates, drop weak matches, keep the best and order them."""
        scored = []
        for candidate in candidates:
            if candidate.kind not in FUZZY_KINDS:
                continue
            score = self.score(query, candidate)
            if score is None or score >= self.config.drop_threshold:
                continue
            scored.append(candidate.with_score(score))

        scored.sort(key=lambda r: r.score)
        return order_by_tie_band(scored[:self.config.max_fuzzy_results], self.config.tie_band)

    def merge(self,
              query: str,
              candidates: Iterable[SearchResult],
              commands: Iterable[SearchResult] = ()) -> List[SearchResult]:
        """
        Final result list for a query.

        Args:
            query: Trimmed query
            candidates: Raw items from the fuzzy-scored sources
            commands: Pre-matched static results, prepended untouched

        Returns:
            At most ``max_results`` items; a single web search fallback when
            nothing matched.
        """
        shortcut = self.short_circuit(query)
        if shortcut is not None:
            return [shortcut]

        fuzzy = self.rank(query, candidates)
        static = [c.with_score(0.0) for c in commands]
        final = (static + fuzzy)[:self.config.max_results]

        if not final:
            logger.debug(f"No matches for '{query}', using web search fallback")
            return [fallback_search(query)]
        return final
