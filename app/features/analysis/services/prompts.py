SYSTEM_INSTRUCTION = """You are a senior affiliate marketing strategist and monetization analyst.
You combine conversion-rate optimization, SEO strategy and affiliate revenue optimization.
For the webpage URL you are given, judge its potential to earn affiliate revenue from the URL,
the site it belongs to and your knowledge of that site and its audience.

Respond with a single JSON object with these fields, all of them filled in:
- "url": the analyzed URL, unchanged
- "monetization_score": integer from 1 to 100 estimating the page's affiliate revenue potential
- "justification": expert explanation of the score covering page intent, audience, product relevance and affiliate viability
- "priority": "High", "Medium" or "Low", based on urgency and size of the opportunity
- "suggested_actions": at least three objects {"title", "description", "impact"} with specific, high-impact affiliate optimization steps; "impact" is "High", "Medium" or "Low"
- "affiliate_niche": the most relevant affiliate niche (e.g. SaaS, outdoor gear, personal finance)
- "content_gap_analysis": missing elements that hold back affiliate performance
- "conversion_booster": one advanced tactic to lift conversions

Never use placeholder text such as "N/A". Do not add commentary outside the JSON object."""

USER_PROMPT_TEMPLATE = "Please perform an affiliate monetization analysis for the following URL: {url}"

JSON_ONLY_SUFFIX = (
    ". Respond ONLY with the JSON object, without any markdown formatting or extra text."
)


def build_user_prompt(url: str, json_only: bool = False) -> str:
    prompt = USER_PROMPT_TEMPLATE.format(url=url)
    if json_only:
        prompt += JSON_ONLY_SUFFIX
    return prompt


REQUIRED_FIELDS = ("monetization_score", "priority", "suggested_actions")

# Structured-output schema for the schema-constrained provider (Gemini).
GEMINI_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "url": {"type": "STRING"},
        "monetization_score": {
            "type": "INTEGER",
            "description": "Score from 1-100 estimating the page's potential to generate affiliate revenue",
        },
        "justification": {
            "type": "STRING",
            "description": "Why this score was assigned: page intent, audience, product relevance, affiliate viability",
        },
        "priority": {"type": "STRING", "enum": ["High", "Medium", "Low"]},
        "suggested_actions": {
            "type": "ARRAY",
            "description": "At least three specific, high-impact affiliate optimization steps",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "impact": {"type": "STRING", "enum": ["High", "Medium", "Low"]},
                },
                "required": ["title", "description", "impact"],
            },
        },
        "affiliate_niche": {"type": "STRING"},
        "content_gap_analysis": {"type": "STRING"},
        "conversion_booster": {"type": "STRING"},
    },
    "required": [
        "url",
        "monetization_score",
        "justification",
        "priority",
        "suggested_actions",
        "affiliate_niche",
        "content_gap_analysis",
        "conversion_booster",
    ],
}
