"""Checks shared by the experience and plan quality analyzers."""
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"

SEVERITY_PENALTY = {
    SEVERITY_CRITICAL: 30,
    SEVERITY_HIGH: 20,
    SEVERITY_MEDIUM: 10,
    SEVERITY_LOW: 5,
}

REQUIRED_LOCALES = ("en", "bs")
MIN_TITLE_LENGTH = 5
SIMILARITY_THRESHOLD = 0.7
DELETE_THRESHOLD_SCORE = 20
MAX_VIOLATIONS_REPORTED = 5

# Ekavian form -> ijekavian (or preferred Bosnian) form
EKAVICA_PATTERNS = tuple(
    (re.compile(rf"\b{word}\b", re.IGNORECASE), correct)
    for word, correct in (
        ("lepo", "lijepo"),
        ("reka", "rijeka"),
        ("vreme", "vrijeme"),
        ("mesto", "mjesto"),
        ("videti", "vidjeti"),
        ("dete", "dijete"),
        ("mleko", "mlijeko"),
        ("belo", "bijelo"),
        ("pevati", "pjevati"),
        ("svet", "svijet"),
        ("čovek", "čovjek"),
        ("devojka", "djevojka"),
        ("deca", "djeca"),
        ("reč", "riječ"),
        ("istorija", "historija"),
        ("tisuca", "hiljada"),
        ("stolece", "stoljeće"),
        ("stoleca", "stoljeća"),
    )
)


def issue(issue_type: str, severity: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {"type": issue_type, "severity": severity, "message": message, **extra}


def detect_ekavica(text: Optional[str]) -> List[Dict[str, str]]:
    """[{found, should_be}] for every ekavian word form present in text."""
    if not text:
        return []
    violations = []
    for pattern, correct in EKAVICA_PATTERNS:
        match = pattern.search(text)
        if match:
            violations.append({"found": match.group(0), "should_be": correct})
    return violations


def is_generic_title(title: str, patterns: Sequence["re.Pattern[str]"]) -> bool:
    return any(p.search(title) for p in patterns)


def string_similarity(a: str, b: str) -> float:
    """Jaccard similarity over whitespace-separated words. Equal strings score 1.0."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    words_a, words_b = set(a.split()), set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def id_similarity(a: Iterable[int], b: Iterable[int]) -> float:
    """Jaccard similarity of two id sets; 0.0 when either is empty."""
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def quality_score(issues: Sequence[Dict[str, Any]]) -> int:
    """100 minus 30/20/10/5 per critical/high/medium/low issue, never below 0."""
    score = 100 - sum(SEVERITY_PENALTY.get(i["severity"], 0) for i in issues)
    return max(score, 0)


def has_blocking_issue(issues: Sequence[Dict[str, Any]]) -> bool:
    return any(i["severity"] in (SEVERITY_CRITICAL, SEVERITY_HIGH) for i in issues)


def title_issues(
    title: str,
    bs_title: str,
    generic_patterns: Sequence["re.Pattern[str]"],
) -> List[Dict[str, Any]]:
    issues = []
    if not title.strip():
        issues.append(issue("missing_title", SEVERITY_CRITICAL, "Missing title"))
    elif len(title) < MIN_TITLE_LENGTH:
        issues.append(issue("short_title", SEVERITY_HIGH, f"Title too short ({len(title)} chars)"))
    elif is_generic_title(title, generic_patterns):
        issues.append(issue("generic_title", SEVERITY_MEDIUM, "Title appears generic or placeholder-like", title=title))

    violations = detect_ekavica(bs_title)
    if violations:
        issues.append(
            issue(
                "ekavica_violation",
                SEVERITY_HIGH,
                "Bosnian title uses ekavica instead of ijekavica",
                violations=violations,
                locale="bs",
            )
        )
    return issues


def count_by_severity(results: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    counts = Counter(i["severity"] for r in results for i in r["issues"])
    return {severity: counts.get(severity, 0) for severity in SEVERITY_PENALTY}


def count_by_type(results: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    return dict(Counter(i["type"] for r in results for i in r["issues"]))


def truncate(text: Optional[str], length: int = 500) -> str:
    return (text or "")[:length]
