"""
Keyword Rule Tables
Ordered (predicate, result) tables for topic routing and similar
substring-based classification. The first matching rule wins.
"""
import unicodedata
from typing import Callable, Generic, Iterable, List, NamedTuple, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class Rule(NamedTuple):
    predicate: Callable
    result: object


def normalize_text(text: str) -> str:
    """Lowercase and strip accents so 'Dúvida' matches 'duvida'"""
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def contains_any(*keywords: str) -> Callable[[str], bool]:
    """Predicate: normalized text contains at least one keyword"""
    needles = [normalize_text(k) for k in keywords]

    def predicate(text: str) -> bool:
        haystack = normalize_text(text)
        return any(needle in haystack for needle in needles)

    return predicate


class RuleTable(Generic[T, R]):
    """Ordered rule list evaluated top to bottom"""

    def __init__(self, rules: Iterable[Rule], default: R):
        self.rules: List[Rule] = list(rules)
        self.default = default

    def classify(self, *args) -> R:
        for rule in self.rules:
            if rule.predicate(*args):
                return rule.result
        return self.default


# Topic assigned to conversations auto-created from inbound WhatsApp messages
TOPIC_RULES: RuleTable[str, str] = RuleTable(
    [
        Rule(contains_any("urgente"), "Urgente"),
        Rule(contains_any("documento"), "Documentos"),
        Rule(contains_any("audiencia", "prazo"), "Audiências"),
        Rule(contains_any("consulta", "duvida"), "Consulta Jurídica"),
    ],
    default="Geral",
)


def classify_topic(text: str) -> str:
    return TOPIC_RULES.classify(text)
