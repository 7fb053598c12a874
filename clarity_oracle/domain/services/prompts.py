"""Prompt templates sent to evidence providers."""

import json

from ..models.evidence import EvidenceVerdict

EVIDENCE_SYSTEM_PROMPT = "You surface factual, current data with citations. Always respond with valid JSON only."


def create_evidence_prompt(question: str) -> str:
    """Chain-of-thought prompt asking for a structured verdict."""
    return f"""You are an impartial fact-checking oracle for prediction markets.

Question: {question}

Follow these steps:
1. ANALYSIS: Break down the question into verifiable facts.
2. RESEARCH: Cite up to 3 trustworthy, independent sources that support or refute these facts, with URLs.
3. EVALUATION: Assess source credibility and identify contradictions.
4. CONCLUSION: Give a final verdict: "Supported", "Refuted" or "Unclear". Use "Unclear" when evidence conflicts.
5. CONFIDENCE: Give a confidence score from 0 to 100.

Return ONLY valid JSON in this format:
{{
  "analysis": "Fact breakdown",
  "evaluation": "Source credibility assessment",
  "verdict": "Supported|Refuted|Unclear",
  "summary": "Brief explanation (max 280 chars)",
  "confidence": 85,
  "sources": [{{"title": "Source title", "url": "https://...", "quote": "Relevant quote"}}]
}}"""


def create_verification_prompt(answer: EvidenceVerdict) -> str:
    """Ask a provider to restate the question from its own answer."""
    return f"""You previously answered a question.

Your answer was: {json.dumps(answer.model_dump(mode="json", exclude_none=True))}

Reconstruct the ORIGINAL question you were answering based ONLY on your answer above.

Return ONLY the reconstructed question, nothing else."""
