from typing import Dict, Mapping

from domain.models import CriterionScore

CV_WEIGHTS: Dict[str, float] = {
    "technical_skills_match": 0.40,
    "experience_level": 0.25,
    "relevant_achievements": 0.20,
    "cultural_fit": 0.15,
}

PROJECT_WEIGHTS: Dict[str, float] = {
    "correctness": 0.30,
    "code_quality": 0.25,
    "resilience": 0.20,
    "documentation": 0.15,
    "creativity": 0.10,
}

MAX_CRITERION_SCORE = 5


def build_breakdown(scores: Mapping[str, int], weights: Mapping[str, float]) -> Dict[str, CriterionScore]:
    missing = set(weights) - set(scores)
    if missing:
        raise ValueError(f"missing criterion scores: {sorted(missing)}")
    return {
        name: CriterionScore(score=scores[name], weight=weight, weighted_score=scores[name] * weight)
        for name, weight in weights.items()
    }


def weighted_total(breakdown: Mapping[str, CriterionScore]) -> float:
    return sum(c.weighted_score for c in breakdown.values())


def cv_match_rate(breakdown: Mapping[str, CriterionScore]) -> float:
    # 1-5 scale normalised to 0-1
    return weighted_total(breakdown) / MAX_CRITERION_SCORE


def project_score(breakdown: Mapping[str, CriterionScore]) -> float:
    # stays on the 0-5 scale, unlike cv_match_rate
    return weighted_total(breakdown)
