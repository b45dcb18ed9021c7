"""Company profile and the keyword dictionaries used for investor matching."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ValidationError

log = logging.getLogger(__name__)


class CompanyProfile(BaseModel):
    name: str
    description: str = ""
    industry: str = ""
    stage: str = ""
    funding_needed: str = ""
    key_technologies: list[str] = []
    target_markets: list[str] = []
    business_model: str = ""
    competitive_advantages: list[str] = []

    def keywords(self) -> list[str]:
        """Technologies, markets and advantages, in that order."""
        return [*self.key_technologies, *self.target_markets, *self.competitive_advantages]


COMPANY_PROFILE = CompanyProfile(
    name="Neural Arc",
    description=(
        "Neural Arc is a generative artificial intelligence company establishing the "
        "cognitive infrastructure for enterprises. Our intelligent agent systems integrate "
        "natively with existing data, allowing organisations to automate decisions, "
        "streamline workflows, and extract actionable insights without costly system "
        "replacement."
    ),
    industry="Artificial Intelligence",
    stage="Seed",
    funding_needed="Seed round",
    key_technologies=[
        "Generative AI",
        "Machine Learning",
        "Enterprise Software",
        "Agent Systems",
        "Data Integration",
        "Workflow Automation",
        "Cognitive Computing",
    ],
    target_markets=[
        "Enterprise",
        "B2B",
        "SaaS",
        "Financial Services",
        "Healthcare",
        "Manufacturing",
        "Technology",
    ],
    business_model="SaaS",
    competitive_advantages=[
        "Proprietary AI agent framework",
        "Native data integration",
        "Rapid deployment capability",
        "Experienced founding team",
        "Strong market momentum in agentic automation",
    ],
)

# Repeated entries are intentional: each occurrence scores separately.
INVESTOR_INTEREST_KEYWORDS: list[str] = [
    # AI / ML
    "artificial intelligence", "machine learning", "AI", "ML", "deep learning", "neural networks",
    "generative AI", "automation", "intelligent systems", "cognitive", "agent systems",
    # Technology
    "technology", "tech", "software", "SaaS", "enterprise software", "platform",
    "digital transformation", "innovation", "disruptive", "emerging technology",
    # Business models
    "B2B", "enterprise", "SaaS", "subscription", "recurring revenue", "scalable",
    # Stages
    "seed", "early stage", "startup", "growth", "venture capital", "angel investment",
    # Sectors
    "fintech", "healthtech", "enterprise", "manufacturing", "financial services",
    # Positive indicators
    "innovative", "disruptive", "transformative", "scalable", "high growth",
    "market leader", "competitive advantage", "proprietary", "intellectual property",
]

INVESTOR_FOCUS_AREAS: dict[str, list[str]] = {
    "ai_ml": ["artificial intelligence", "machine learning", "AI", "ML", "deep learning",
              "neural networks", "generative AI"],
    "enterprise": ["enterprise", "B2B", "corporate", "business software", "enterprise software"],
    "saas": ["SaaS", "software as a service", "subscription", "recurring revenue"],
    "fintech": ["fintech", "financial technology", "banking", "payments", "financial services"],
    "healthtech": ["healthtech", "healthcare technology", "medical", "healthcare"],
    "automation": ["automation", "workflow", "process automation", "efficiency"],
    "data": ["data", "analytics", "insights", "business intelligence", "data integration"],
}


def load_profile(path: str | Path | None = None) -> CompanyProfile:
    """Load a company profile from a JSON file.

    Uses *path*, then ``PITCHDESK_PROFILE``; falls back to the built-in
    profile when neither is set. Raises ValueError if the file is unreadable
    or does not describe a profile.
    """
    if path is None:
        path = os.environ.get("PITCHDESK_PROFILE", "").strip() or None
    if path is None:
        return COMPANY_PROFILE
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot read company profile {path}: {exc}") from exc
    try:
        profile = CompanyProfile.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid company profile {path}: {exc}") from exc
    log.info("Loaded company profile %r from %s", profile.name, path)
    return profile
