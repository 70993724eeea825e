"""
Field-definition driven match scoring

Admins configure which profile fields take part in matching (field_definitions
rows: field_name, field_type, use_ai_matching, matching_weight). Each field is
scored 0-100 by type, weighted, and the weighted sum is normalized to 0-100.
"""

import json
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..logging_config import get_logger

logger = get_logger(__name__)

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
DEFAULT_MIN_SCORE = 30

GEOGRAPHIC_FIELDS = {"cities", "states", "zip_codes", "counties", "primary_neighborhoods"}
PERFORMANCE_FIELDS = {
    "experience", "transactions", "total_volume_12mo", "transactions_12mo",
    "annual_loan_volume", "qualification_score",
}


@dataclass
class FieldDefinition:
    field_name: str
    field_type: str
    matching_weight: float = 0
    use_ai_matching: bool = False
    allowed_values: Optional[List[str]] = None

    @classmethod
    def from_row(cls, row: dict) -> "FieldDefinition":
        return cls(
            field_name=row["field_name"],
            field_type=row["field_type"],
            matching_weight=row.get("matching_weight") or 0,
            use_ai_matching=bool(row.get("use_ai_matching")),
            allowed_values=row.get("allowed_values"),
        )


@dataclass
class FieldScore:
    score: float
    match_type: str  # exact | overlap | range | semantic | none
    details: str


@dataclass
class MatchBreakdown:
    total_score: float = 0
    field_scores: List[dict] = field(default_factory=list)
    geographic_score: float = 0
    performance_score: float = 0
    ai_semantic_score: float = 0

    def to_dict(self) -> dict:
        return asdict(self)


class SemanticMatcher:
    """Asks an OpenAI chat model how closely two free-text answers agree."""

    def __init__(self, client: OpenAI = None, model: str = OPENAI_MODEL):
        self._client = client
        self.model = model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable not set")
            self._client = OpenAI(api_key=api_key)
        return self._client

    def compare(self, text1: str, text2: str, context: str) -> Dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "system",
                    "content": (
                        "You compare two short answers from a recruiting profile. "
                        'Reply with JSON: {"score": <0..1>, "reasoning": "<one sentence>"}.'
                    ),
                },
                {"role": "user", "content": f"{context}\nA: {text1}\nB: {text2}"},
            ],
            temperature=0,
            response_format={"type": "json_object"},
        )
        result = json.loads(response.choices[0].message.content)
        score = float(result["score"])
        return {"score": max(0.0, min(score, 1.0)), "reasoning": result.get("reasoning", "")}


def simple_string_similarity(text1: str, text2: str) -> FieldScore:
    longer, shorter = (text1, text2) if len(text1) > len(text2) else (text2, text1)
    if longer and shorter in longer:
        score = round(len(shorter) / len(longer) * 70)
        return FieldScore(score, "semantic", f"Partial match ({score}% similarity)")
    return FieldScore(0, "semantic", "No text similarity")


def score_numeric(value1: Any, value2: Any) -> FieldScore:
    try:
        n1, n2 = float(value1), float(value2)
    except (TypeError, ValueError):
        return FieldScore(0, "range", "Invalid numeric values")

    if n1 == n2:
        return FieldScore(100, "exact", "Exact numeric match")

    average = (n1 + n2) / 2
    pct = abs(n1 - n2) / average * 100 if average != 0 else 100
    if pct < 10:
        score = 90
    elif pct < 25:
        score = 70
    elif pct < 50:
        score = 50
    elif pct < 75:
        score = 30
    elif pct < 100:
        score = 10
    else:
        score = 0
    return FieldScore(score, "range", f"{pct:.1f}% difference")


def score_array(value1: Any, value2: Any) -> FieldScore:
    items1 = [str(v).lower().strip() for v in value1] if isinstance(value1, list) else []
    items2 = [str(v).lower().strip() for v in value2] if isinstance(value2, list) else []
    if not items1 or not items2:
        return FieldScore(0, "overlap", "One or both arrays empty")

    intersection = sorted(set(items1) & set(items2))
    union = set(items1) | set(items2)
    score = round(len(intersection) / len(union) * 100)
    return FieldScore(
        score,
        "overlap",
        f"{len(intersection)} of {len(union)} items match ({', '.join(intersection) or 'none'})",
    )


def score_boolean(value1: Any, value2: Any) -> FieldScore:
    if value1 == value2:
        return FieldScore(100, "exact", "Both values match")
    return FieldScore(0, "exact", "Values differ")


def score_select(value1: Any, value2: Any) -> FieldScore:
    if str(value1).lower().strip() == str(value2).lower().strip():
        return FieldScore(100, "exact", f"Both selected: {value1}")
    return FieldScore(0, "exact", f"Different selections: {value1} vs {value2}")


class IntelligentMatcher:
    """
    Scores two entities (Pro and Client rows) over configured fields.

    Usage:
        matcher = IntelligentMatcher()
        breakdown = matcher.calculate_match(pro, client, definitions)
    """

    def __init__(self, semantic: SemanticMatcher = None):
        self.semantic = semantic or SemanticMatcher()

    def calculate_match(self, entity1: dict, entity2: dict,
                        definitions: List[FieldDefinition]) -> MatchBreakdown:
        breakdown = MatchBreakdown()
        fields = [d for d in definitions if d.matching_weight > 0]
        total_weight = sum(d.matching_weight for d in fields)

        for definition in fields:
            result = self.score_field(definition, entity1.get(definition.field_name),
                                      entity2.get(definition.field_name))
            weighted = result.score / 100 * definition.matching_weight
            breakdown.field_scores.append({
                "field_name": definition.field_name,
                "score": weighted,
                "max_score": definition.matching_weight,
                "match_type": result.match_type,
                "details": result.details,
            })

            if definition.field_name in GEOGRAPHIC_FIELDS:
                breakdown.geographic_score += weighted
            elif definition.field_name in PERFORMANCE_FIELDS:
                breakdown.performance_score += weighted
            elif result.match_type == "semantic":
                breakdown.ai_semantic_score += weighted
            breakdown.total_score += weighted

        breakdown.total_score = (
            round(breakdown.total_score / total_weight * 100) if total_weight > 0 else 0
        )
        return breakdown

    def score_field(self, definition: FieldDefinition, value1: Any, value2: Any) -> FieldScore:
        if value1 is None or value2 is None:
            return FieldScore(0, "none", "One or both values missing")

        field_type = definition.field_type
        if field_type in ("text", "textarea"):
            return self.score_text(definition, value1, value2)
        if field_type in ("number", "currency"):
            return score_numeric(value1, value2)
        if field_type in ("array", "multi_select"):
            return score_array(value1, value2)
        if field_type == "boolean":
            return score_boolean(value1, value2)
        if field_type in ("select", "enum"):
            return score_select(value1, value2)
        return FieldScore(0, "none", "Unknown field type")

    def score_text(self, definition: FieldDefinition, value1: Any, value2: Any) -> FieldScore:
        text1 = str(value1).lower().strip()
        text2 = str(value2).lower().strip()
        if text1 == text2:
            return FieldScore(100, "exact", "Exact text match")

        if definition.use_ai_matching:
            try:
                result = self.semantic.compare(
                    text1, text2, f"Comparing {definition.field_name} fields for matching"
                )
                return FieldScore(round(result["score"] * 100), "semantic", result["reasoning"])
            except Exception as e:
                logger.warning(
                    f"AI semantic matching failed for {definition.field_name}: {e}",
                    extra={"action": "semantic_match_failed"},
                )

        return simple_string_similarity(text1, text2)


def filter_by_threshold(matches: List[dict], min_score: float = DEFAULT_MIN_SCORE) -> List[dict]:
    return [m for m in matches if m["breakdown"]["total_score"] >= min_score]


def sort_by_score(matches: List[dict]) -> List[dict]:
    return sorted(matches, key=lambda m: m["breakdown"]["total_score"], reverse=True)
