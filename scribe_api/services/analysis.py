from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any

MAX_TAGS = 15
MAX_ACTION_ITEMS = 10
MAX_TOPICS = 10


@dataclass
class TranscriptAnalysis:
    tags: list[str] = field(default_factory=list)
    category: str = "general"
    action_items: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    sentiment: str = "neutral"
    importance_score: float = 0.5
    speaker_count: int | None = None
    conversation_type: str | None = None
    entities: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _has(pattern: str, text: str) -> bool:
    return re.search(pattern, text, flags=re.IGNORECASE) is not None


# Content-type and topic detectors.
_MEETING = r"\b(meeting|conference|call|discussion|sync|standup|agenda)\b"
_INTERVIEW = r"\b(interview|candidate|hiring|question|applicant)\b"
_LECTURE = r"\b(lecture|class|lesson|course|teach|learn|student)\b"
_PODCAST = r"\b(podcast|episode|host|guest|show)\b"
_NOTE = r"\b(note|reminder|memo|remember|jot down)\b"
_TECHNICAL = r"\b(code|api|function|database|server|deploy|bug|feature|programming|software|development)\b"
_BUSINESS = r"\b(business|client|revenue|budget|strategy|proposal|contract|sales|marketing)\b"
_GAMING = r"\b(game|campaign|character|dice|dungeon|dragon|quest|adventure|rpg|d&d)\b"
_AUTOMOTIVE = r"\b(car|vehicle|tesla|engine|maintenance|repair|driving|tire|oil)\b"
_PERSONAL = r"\b(grocery|recipe|family|personal|health|workout|vacation|appointment)\b"
_ACTIONS = r"\b(need to|have to|must|should|todo|action item|remember to)\b"
_DECISIONS = r"\b(decided|decision|chose|going with|will use|selected)\b"
_URGENT = r"\b(urgent|asap|immediately|priority|critical|emergency|important)\b"
_CODE = r"```[\s\S]*?```|`[^`]+`|\b(function|class|const|let|var|import|export)\b"
_API = r"\b(api|endpoint|rest|graphql|request|response|http|get|post|put|delete)\b"

CATEGORIES: dict[str, list[str]] = {
    "gaming": ["game", "campaign", "character", "dice", "dungeon", "dragon", "d&d", "rpg", "quest", "adventure"],
    "development": [
        "code", "api", "function", "database", "server", "deploy", "bug",
        "feature", "react", "typescript", "python", "javascript",
    ],
    "automotive": ["car", "vehicle", "tesla", "engine", "maintenance", "repair", "driving", "oil change", "tire"],
    "business": ["meeting", "client", "project", "deadline", "budget", "revenue", "strategy", "proposal", "contract"],
    "personal": ["grocery", "recipe", "family", "reminder", "appointment", "health", "workout", "vacation"],
}

_ACTION_PATTERNS = [
    re.compile(r"(?:need to|have to|must|should|got to|gotta)\s+([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"(?:todo|to-do|to do):\s*([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"(?:action item|action point):\s*([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"(?:i'll|i will|we'll|we will|let's)\s+([^.!?\n]+)", re.IGNORECASE),
    re.compile(r"(?:remember to|don't forget to)\s+([^.!?\n]+)", re.IGNORECASE),
]

_TECH_TOPICS = ["react", "typescript", "python", "javascript", "api", "database", "server", "cloud", "aws", "docker", "kubernetes"]
_BUSINESS_TOPICS = ["strategy", "revenue", "growth", "marketing", "sales", "customer", "product"]
_COMMON_CAPITALIZED = {"I", "The", "A", "An", "This", "That", "There", "It", "We", "You", "They"}

_POSITIVE = ["great", "excellent", "good", "awesome", "love", "perfect", "happy", "success", "excited"]
_NEGATIVE = ["bad", "terrible", "awful", "hate", "problem", "issue", "error", "fail", "difficult", "frustrated"]

_TECH_ENTITIES = [
    "React", "TypeScript", "JavaScript", "Python", "Java", "Node.js", "Express",
    "AWS", "Azure", "Google Cloud", "Docker", "Kubernetes", "MongoDB", "PostgreSQL",
    "Redis", "GraphQL", "REST API", "Next.js", "Vue", "Angular",
]


def _dedupe(items: list[str], limit: int) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for it in items:
        if it in seen:
            continue
        seen.add(it)
        out.append(it)
        if len(out) >= limit:
            break
    return out


def _count_words(words: list[str], lower: str) -> int:
    return sum(len(re.findall(rf"\b{re.escape(w)}\b", lower)) for w in words)


def extract_tags(text: str) -> list[str]:
    lower = text.lower()
    tags = ["audio-transcription"]

    for pattern, names in (
        (_MEETING, ["meeting"]),
        (_INTERVIEW, ["interview"]),
        (_LECTURE, ["lecture"]),
        (_PODCAST, ["podcast"]),
        (_NOTE, ["voice-note"]),
        (_TECHNICAL, ["technical", "development"]),
        (_BUSINESS, ["business", "strategy"]),
        (_GAMING, ["gaming", "d&d"]),
        (_AUTOMOTIVE, ["automotive", "vehicle"]),
        (_PERSONAL, ["personal"]),
        (_ACTIONS, ["action-items", "todo"]),
        (_DECISIONS, ["decisions", "important"]),
        (_URGENT, ["urgent", "priority"]),
    ):
        if _has(pattern, lower):
            tags.extend(names)

    if _has(_CODE, text):
        tags.extend(["code", "programming"])
    if _has(_API, lower):
        tags.extend(["api", "integration"])

    return _dedupe(tags, MAX_TAGS)


def detect_category(text: str) -> str:
    lower = text.lower()
    best, best_score = "general", 0
    for name, words in CATEGORIES.items():
        score = _count_words(words, lower)
        if score > best_score:
            best, best_score = name, score
    return best if best_score > 2 else "general"


def extract_action_items(text: str) -> list[str]:
    items: list[str] = []
    for pattern in _ACTION_PATTERNS:
        for m in pattern.finditer(text):
            item = m.group(1).strip()
            if 10 < len(item) < 200:
                items.append(item)
    return items[:MAX_ACTION_ITEMS]


def extract_topics(text: str) -> list[str]:
    lower = text.lower()
    topics = [t for t in _TECH_TOPICS if t in lower]
    topics += [t for t in _BUSINESS_TOPICS if t in lower]
    for phrase in re.findall(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b", text):
        if phrase not in _COMMON_CAPITALIZED and len(phrase) > 3:
            topics.append(phrase.lower())
    return _dedupe(topics, MAX_TOPICS)


def detect_sentiment(text: str) -> str:
    lower = text.lower()
    pos = _count_words(_POSITIVE, lower)
    neg = _count_words(_NEGATIVE, lower)
    if pos > neg * 1.5:
        return "positive"
    if neg > pos * 1.5:
        return "negative"
    return "neutral"


def importance_score(text: str) -> float:
    lower = text.lower()
    score = 0.5
    if _has(_ACTIONS, lower):
        score += 0.1
    if _has(_DECISIONS, lower):
        score += 0.15
    if _has(_URGENT, lower):
        score += 0.15
    if _has(_TECHNICAL, lower):
        score += 0.05
    if _has(_CODE, text):
        score += 0.05
    if len(text) > 5000:
        score += 0.1
    if len(text) > 10000:
        score += 0.05
    return round(min(score, 1.0), 2)


def speaker_insights(segments: list[dict[str, Any]] | None) -> tuple[int | None, str | None]:
    if not segments:
        return None, None
    speakers = {str(s.get("speaker") or "Unknown") for s in segments}
    n = len(speakers)
    if n == 2:
        kind = "dialogue"
    elif 2 < n <= 4:
        kind = "small-group"
    elif n > 4:
        kind = "large-group"
    else:
        kind = "monologue"
    return n, kind


def extract_entities(text: str) -> dict[str, list[str]]:
    people = re.findall(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,2})\b", text)
    orgs = re.findall(r"\b([A-Z][A-Za-z]+(?:\s+[A-Z][A-Za-z]+)*\s+(?:Inc|LLC|Corp|Ltd|Company))\b", text)
    dates: list[str] = []
    for pattern in (
        r"\b\d{1,2}/\d{1,2}/\d{2,4}\b",
        r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December)"
        r"\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}\b",
        r"\b(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{1,2},?\s+\d{4}\b",
    ):
        dates.extend(m.group(0) for m in re.finditer(pattern, text, flags=re.IGNORECASE))
    tech = [t for t in _TECH_ENTITIES if re.search(rf"\b{re.escape(t)}\b", text, flags=re.IGNORECASE)]

    return {
        "people": _dedupe(people, 10),
        "organizations": _dedupe(orgs, 10),
        "dates": _dedupe(dates, 10),
        "technologies": _dedupe(tech, 10),
    }


def is_urgent(text: str, tags: list[str] | None = None) -> bool:
    keywords = ("urgent", "asap", "critical", "emergency", "immediate", "deadline")
    lower = (text or "").lower()
    if any(k in lower for k in keywords):
        return True
    return any(k in (t or "").lower() for t in tags or [] for k in keywords)


def analyze(
    text: str,
    segments: list[dict[str, Any]] | None = None,
    metadata: dict[str, Any] | None = None,
) -> TranscriptAnalysis:
    """
    Keyword-based analysis of a finished transcript. Pure function; the
    caller decides what happens if it raises.
    """
    text = text or ""
    count, kind = speaker_insights(segments)
    return TranscriptAnalysis(
        tags=extract_tags(text),
        category=detect_category(text),
        action_items=extract_action_items(text),
        topics=extract_topics(text),
        sentiment=detect_sentiment(text),
        importance_score=importance_score(text),
        speaker_count=count,
        conversation_type=kind,
        entities=extract_entities(text),
    )
