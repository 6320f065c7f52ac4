"""Learned merge rules: storage, matching and token extraction."""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Protocol, Sequence

from .models import Cluster, LearnedRule
from .similarity import normalize, tokenize

logger = logging.getLogger(__name__)

MAX_RULES = 200
MAX_RULE_TOKENS = 8
MIN_TOKEN_FREQUENCY = 2


class RuleStore(Protocol):
    """Durable, append-only log of learned merge rules."""

    def load(self) -> List[LearnedRule]:
        ...

    def append(self, rule: LearnedRule) -> int:
        """Persist a new rule and return the number of rules kept."""
        ...


class InMemoryRuleStore:
    """Rule store that never touches disk."""

    def __init__(self, rules: Iterable[LearnedRule] = (), max_rules: int = MAX_RULES):
        self.max_rules = max_rules
        self._rules: List[LearnedRule] = list(rules)[-max_rules:]

    def load(self) -> List[LearnedRule]:
        return list(self._rules)

    def append(self, rule: LearnedRule) -> int:
        self._rules.append(rule)
        self._rules = self._rules[-self.max_rules:]
        return len(self._rules)


class JsonRuleStore:
    """
    Rule store backed by a single JSON file.

    The file holds an ordered array of {tokens, headlines, createdAt}
    records. It is read wholesale and rewritten wholesale; only the most
    recent `max_rules` records are kept. Concurrent writers are not
    coordinated: the last full rewrite wins.
    """

    def __init__(self, path: str | os.PathLike, max_rules: int = MAX_RULES):
        self.path = Path(path)
        self.max_rules = max_rules

    def load(self) -> List[LearnedRule]:
        """
        Read all rules. Missing or unreadable storage yields no rules.

        Malformed records are skipped one by one, so a single bad entry
        never costs the valid rules around it.
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Learned rule store {self.path} unreadable, using no rules: {e}")
            return []

        if not isinstance(records, list):
            logger.warning(f"Learned rule store {self.path} is not a JSON array, using no rules")
            return []

        rules = []
        for position, record in enumerate(records):
            try:
                rules.append(LearnedRule.from_dict(record))
            except ValueError as e:
                logger.warning(f"Skipping invalid record {position} in learned rule store {self.path}: {e}")
        return rules

    def append(self, rule: LearnedRule) -> int:
        rules = self.load()
        rules.append(rule)
        rules = rules[-self.max_rules:]
        self._write(rules)
        logger.info(f"Stored learned rule {rule.tokens} ({len(rules)} rules kept)")
        return len(rules)

    def _write(self, rules: Sequence[LearnedRule]) -> None:
        """Replace the store file in one step."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([r.to_dict() for r in rules], indent=2, ensure_ascii=False)

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


def required_hits(rule: LearnedRule) -> int:
    """Tokens a headline must contain for the rule to apply to it."""
    return math.ceil(len(rule.tokens) / 2)


def rule_applies(rule: LearnedRule, headline_tokens: frozenset[str]) -> bool:
    """Whether a headline carries at least half of the rule's tokens."""
    if not rule.tokens:
        return False
    hits = sum(1 for token in rule.tokens if token in headline_tokens)
    return hits >= required_hits(rule)


def learned_match(a: Cluster, b: Cluster, rules: Sequence[LearnedRule]) -> bool:
    """
    Whether any learned rule ties the two clusters together.

    Each cluster must independently cross the rule's half threshold; the
    two need not share the same subset of tokens.
    """
    if not rules:
        return False
    a_tokens = normalize(a.headline)
    b_tokens = normalize(b.headline)
    return any(rule_applies(rule, a_tokens) and rule_applies(rule, b_tokens) for rule in rules)


def extract_rule_tokens(headlines: Sequence[str]) -> List[str]:
    """
    Headline tokens shared by at least two of the given headlines.

    Sorted by descending frequency, ties in first-occurrence order, capped
    at MAX_RULE_TOKENS.
    """
    frequency: Counter[str] = Counter()
    for headline in headlines:
        frequency.update(tokenize(headline))

    return [
        token for token, count in frequency.most_common()
        if count >= MIN_TOKEN_FREQUENCY
    ][:MAX_RULE_TOKENS]
