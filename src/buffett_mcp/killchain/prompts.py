"""Prompt templates for kill-chain step analysis."""

from typing import Any

from buffett_mcp.killchain.models import MOAT_TYPES, STEP_TITLES, FundamentalsRecord

NOT_AVAILABLE = "Not available"

SYSTEM_PERSONA = (
    "You are a senior investment analyst. You analyze businesses using Warren Buffett "
    "and Charlie Munger's framework. You are concise, opinionated, and direct. No fluff. "
    "No jargon unless necessary. A smart 16-year-old should understand your output."
)

# Prompt definitions: which fundamentals each step sees, and the JSON it must return
PROMPTS: dict[int, dict[str, Any]] = {
    1: {
        "task": "Analyze this company for a Buffett-style investment review.",
        "fields": [
            ("Business Description", "business_summary"),
            ("Revenue", "revenue"),
            ("Net Income", "net_income"),
            ("Profit Margin", "profit_margin"),
            ("Market Cap", "market_cap"),
        ],
        "schema": """{
  "characteristics": ["tag1", "tag2", "tag3"],
  "summary": "Exactly 3 sentences max. How does this company make money? Written so a teenager gets it.",
  "verdict": "simple" or "complex"
}""",
        "rules": [
            'characteristics: 3-5 short tags describing the business model (e.g. "Asset-Light", '
            '"Brand-Led", "Franchise Model", "Pricing Power", "Global Reach", "Subscription", '
            '"Platform", "Hardware", "Commodity", "Regulated")',
            "summary: Max 3 sentences. Plain English. How does the company actually make money?",
            'verdict: "simple" if a smart teenager could explain this business after 5 minutes, '
            '"complex" if not',
        ],
    },
    2: {
        "task": "Assess the durability of this company's competitive advantage (its moat).",
        "fields": [
            ("Business Description", "business_summary"),
            ("Profit Margin", "profit_margin"),
            ("ROIC", "roic"),
            ("ROIC Note", "roic_note"),
            ("Revenue", "revenue"),
            ("Market Cap", "market_cap"),
        ],
        "schema": """{
  "moatType": "one moat label",
  "moatRating": "strong" or "moderate" or "weak",
  "evidence": "1-2 sentences of evidence from the numbers and the business",
  "threats": "1-2 sentences on what could erode the moat"
}""",
        "rules": [
            "moatType: one of " + ", ".join(f'"{label}"' for label in MOAT_TYPES),
            "moatRating: strong only if returns on capital are durably high and hard to copy",
            "evidence and threats: plain English, no hedging",
        ],
    },
    3: {
        "task": "Grade the management team on capital allocation and candor.",
        "fields": [
            ("Business Description", "business_summary"),
            ("Net Income", "net_income"),
            ("Profit Margin", "profit_margin"),
            ("ROIC", "roic"),
            ("Website", "website"),
        ],
        "schema": """{
  "grade": "A" or "B" or "C" or "D" or "F",
  "summary": "2 sentences on how well management allocates capital",
  "concerns": "1-2 sentences on red flags, or \\"None apparent\\""
}""",
        "rules": [
            "grade: A = exceptional owner-operators, F = value destroyers",
            "Base the grade only on what the numbers and description support",
        ],
    },
    4: {
        "task": "Judge whether the current price is sensible for a long-term owner.",
        "fields": [
            ("Current Price", "current_price"),
            ("Currency", "currency"),
            ("P/E Ratio (TTM)", "pe_ratio"),
            ("Forward P/E", "forward_pe"),
            ("Market Cap", "market_cap"),
            ("52-Week Low", "fifty_two_week_low"),
            ("52-Week High", "fifty_two_week_high"),
            ("Net Income", "net_income"),
            ("ROIC", "roic"),
        ],
        "schema": """{
  "verdict": "undervalued" or "fairly valued" or "overvalued",
  "reasoning": "2-3 sentences",
  "marginOfSafety": "high" or "moderate" or "low" or "none",
  "keyMetric": "The single metric that matters most here and what it tells you"
}""",
        "rules": [
            "Compare earnings yield to a 10-year Treasury yield of roughly 4%",
            "marginOfSafety: how far below a conservative intrinsic value the price sits",
        ],
    },
}


def render_value(value: Any) -> str:
    """Render a fundamentals field verbatim, or the not-available sentinel."""
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, str) and not value.strip():
        return NOT_AVAILABLE
    return str(value)


def build_step_prompt(step: int, fundamentals: FundamentalsRecord) -> str:
    """
    Build the deterministic user prompt for a step.

    Args:
        step: Kill-chain step (1-4)
        fundamentals: Fundamentals for the run

    Returns:
        Prompt text. Same inputs always give the same text.
    """
    if step not in PROMPTS:
        raise ValueError(f"Invalid step {step}. Must be one of: {sorted(PROMPTS)}")

    spec = PROMPTS[step]
    lines = [
        f"Kill chain step {step}: {STEP_TITLES[step]}",
        spec["task"],
        "",
        f"Company: {fundamentals.company_name} ({fundamentals.ticker})",
    ]
    for label, attr in spec["fields"]:
        lines.append(f"{label}: {render_value(getattr(fundamentals, attr))}")

    lines += [
        "",
        "Return your analysis as JSON with exactly this structure:",
        spec["schema"],
        "",
        "Rules:",
    ]
    lines += [f"- {rule}" for rule in spec["rules"]]
    lines += ["", "Return ONLY the JSON object, no markdown fences, no extra text."]
    return "\n".join(lines)
