"""Default prompt templates and the query-type heuristic that picks their guidance.

Templates use ``str.format`` placeholders: ``{persona}``, ``{query}``,
``{guidance}``, ``{round}`` and ``{previous_responses}``.
"""

import re

INITIAL = """{persona}
You are one of several AI agents in a multi-round debate that aims for the best possible answer.
This is the FIRST round. Give your own best answer to the query.

QUERY: {query}

{guidance}

End your response with a single line of the form:
FINAL ANSWER: <your answer>"""

DEBATE = """{persona}
You are one of several AI agents in a multi-round debate that aims for the best possible answer.
This is ROUND {round}. Below are the original query and every answer from the previous round.

ORIGINAL QUERY: {query}

PREVIOUS ROUND RESPONSES:
{previous_responses}

Your task:
1. Critique the previous responses: point out errors, gaps and unsupported claims.
2. Acknowledge the points you agree with.
3. Refine your own position, changing it if another response is better argued.

{guidance}

End your response with a single line of the form:
FINAL ANSWER: <your answer>"""

FINAL = """{persona}
You are one of several AI agents in a multi-round debate that aims for the best possible answer.
This is the FINAL ROUND ({round}). Below are the original query and every answer from the previous round.

ORIGINAL QUERY: {query}

PREVIOUS ROUND RESPONSES:
{previous_responses}

Weigh everything said so far and commit to a final position. If disagreements remain,
say briefly why you side with one view.

{guidance}

End your response with exactly these two lines:
FINAL ANSWER: <your answer>
CONFIDENCE: <a number from 0.0 to 1.0>"""

GUIDANCE = {
    "factual": (
        "This query has a single correct answer. Work it out step by step, double-check it, "
        "and state the answer as briefly as possible, e.g. just the number or name."
    ),
    "abstract": (
        "This query is open-ended. Consider several perspectives, reason carefully about their "
        "trade-offs, and aim for a synthesis the other agents could also accept. "
        "Keep the final answer to one sentence."
    ),
    "unknown": "Be accurate and concise. Keep the final answer short so it can be compared with the others.",
}

_ARITHMETIC_RE = re.compile(r"[\d\s+\-*/=^().,%]+")
_NUMBER_RE = re.compile(r"\d")

_ABSTRACT_MARKERS = (
    "why",
    "how should",
    "meaning of",
    "purpose of",
    "ethics",
    "moral",
    "philosoph",
    "subjective",
    "perspective",
    "implications",
    "impact of",
    "believe",
    "opinion",
    "thoughts on",
    "feel about",
    "should we",
)

_FACTUAL_PREFIXES = (
    "what is",
    "what's",
    "calculate",
    "compute",
    "solve",
    "how many",
    "how much",
    "when did",
    "when was",
    "who is",
    "who was",
    "where is",
    "which",
    "name",
    "define",
)


def detect_query_type(query: str) -> str:
    """Classify ``query`` as 'factual', 'abstract' or 'unknown'.

    Mostly-arithmetic queries are factual. Philosophical markers win over
    interrogative factual prefixes ("What is the meaning of life?" is abstract).
    """
    text = query.strip().lower()
    if not text:
        return "unknown"

    longest = max((m.group(0) for m in _ARITHMETIC_RE.finditer(text)), key=len, default="")
    if _NUMBER_RE.search(longest) and len(longest.strip()) > len(text) * 0.5:
        return "factual"

    if any(marker in text for marker in _ABSTRACT_MARKERS):
        return "abstract"

    if text.startswith(_FACTUAL_PREFIXES):
        return "factual"
    if _NUMBER_RE.search(text) and re.search(r"\d\s*[-+*/^x]\s*\d", text):
        return "factual"

    return "unknown"
