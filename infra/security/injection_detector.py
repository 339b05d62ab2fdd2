"""Model-based prompt-injection detection for extracted CV and project text.

Detection fails open: if the model call errors, the text is treated as clean
so a detector outage never blocks a valid submission.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from domain.errors import EvaluationError
from domain.models import FlaggedSpan, InjectionDetection, InjectionProfile, Severity, UsageStats
from infra.llm.client import GenerationClient
from infra.llm.prompts import INJECTION_DETECTION_SYSTEM_PROMPT, INJECTION_DETECTION_USER_PROMPT
from infra.llm.retry import ModelChoice
from infra.llm.schemas import InjectionDetectionOutput

logger = logging.getLogger(__name__)

# context economy for the detector model, not a security boundary
MAX_DETECTION_CHARS = 8000

CV_CONFIDENCE_THRESHOLD = 0.3
PROJECT_CONFIDENCE_THRESHOLD = 0.6

REDACTION = " [Content removed due to security policy] "
REDACTION_MARGIN = 10


def should_block(detection: InjectionDetection, profile: InjectionProfile) -> bool:
    if not detection.detected:
        return False
    if profile == InjectionProfile.CV:
        return (
            detection.severity in (Severity.CRITICAL, Severity.HIGH)
            or detection.confidence >= CV_CONFIDENCE_THRESHOLD
        )
    return detection.severity == Severity.CRITICAL or detection.confidence >= PROJECT_CONFIDENCE_THRESHOLD


def blocked_message(label: str, detection: InjectionDetection) -> str:
    return (
        f"{label} contains prohibited manipulation attempts "
        f"({detection.severity.value} severity, confidence: {detection.confidence:.2f}): "
        f"{detection.reason[:100]}"
    )


@dataclass
class SanitizedText:
    text: str
    detection: InjectionDetection
    removed: List[FlaggedSpan] = field(default_factory=list)


class InjectionDetector:
    def __init__(self, generation: GenerationClient):
        self.generation = generation

    async def detect(
        self,
        text: str,
        profile: InjectionProfile,
        usage: Optional[UsageStats] = None,
    ) -> InjectionDetection:
        if not text or not text.strip():
            return InjectionDetection.clean("Empty text, no injection possible")

        truncated = text if len(text) <= MAX_DETECTION_CHARS else text[:MAX_DETECTION_CHARS] + "..."
        is_cv = profile == InjectionProfile.CV
        user_prompt = INJECTION_DETECTION_USER_PROMPT.format(
            context="CV" if is_cv else "project report",
            text=truncated,
            sensitivity="sensitive" if is_cv else "tolerant",
        )
        fast = self.generation.fast_model
        try:
            output = await self.generation.generate_structured(
                INJECTION_DETECTION_SYSTEM_PROMPT,
                user_prompt,
                InjectionDetectionOutput,
                primary=ModelChoice(fast, 0.2),
                fallback=ModelChoice(fast, 0.3),
                max_tokens=1000,
                usage=usage,
            )
        except (EvaluationError, httpx.HTTPError) as exc:
            logger.warning(f"AI-based prompt injection detection failed for {profile.value}, skipping check: {exc}")
            return InjectionDetection.clean("AI detection failed")

        spans = []
        for section in output.suspicious_sections:
            start = section.start_index
            if start is None:
                found = text.find(section.text)
                start = found if found >= 0 else 0
            end = section.end_index if section.end_index is not None else start + len(section.text)
            spans.append(FlaggedSpan(start=start, end=end, text=section.text, reason=output.reason))

        detection = InjectionDetection(
            detected=output.detected,
            severity=Severity(output.severity),
            confidence=output.confidence,
            reason=output.reason,
            flagged_spans=spans,
        )
        if detection.detected:
            logger.warning(
                f"Prompt injection detected in {profile.value}: severity={detection.severity.value} "
                f"confidence={detection.confidence:.2f} reason={detection.reason[:100]}")
        return detection

    async def sanitize(
        self,
        text: str,
        profile: InjectionProfile,
        usage: Optional[UsageStats] = None,
    ) -> SanitizedText:
        """Redact flagged spans from ``text``.

        Standalone utility for callers that want a cleaned copy; the evaluation
        pipeline blocks or warns on detection and never feeds redacted text to scoring.
        """
        detection = await self.detect(text, profile, usage=usage)
        if not detection.detected:
            return SanitizedText(text=text, detection=detection)

        sanitized = text
        removed = []
        # right to left so earlier offsets stay valid
        for span in sorted(detection.flagged_spans, key=lambda s: s.start, reverse=True):
            start = max(0, span.start - REDACTION_MARGIN)
            end = min(len(sanitized), span.end + REDACTION_MARGIN)
            removed.append(FlaggedSpan(start=start, end=end, text=sanitized[start:end], reason=span.reason))
            sanitized = sanitized[:start] + REDACTION + sanitized[end:]
        if removed:
            logger.warning(
                f"Sanitized {profile.value} text: removed {len(removed)} sections "
                f"({len(text)} -> {len(sanitized)} chars)")
        return SanitizedText(text=sanitized, detection=detection, removed=removed)
