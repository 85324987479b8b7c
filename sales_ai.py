import json
import logging
from typing import Any, Dict, Iterable

import google.generativeai as genai

import config
from ledger import normalize_record

logger = logging.getLogger(__name__)

AUDIT_PROMPT = """
Analyze the following agricultural sales records from our cooperative.

In your report:
1. Transaction Performance: Audit pricing consistency and volume for the recorded sales.
2. Pricing Anomalies: Identify any transactions that seem outside the market norm.
3. Customer Insights: Identify repeat customers or significant buyer trends.
4. Audit Conclusions: Provide high-level recommendations for management.

Sales Data (JSON):
{sales}

Format your response as a professional auditing report in markdown.
"""


def summarize(records: Iterable[Dict[str, Any]]):
    summary = []
    for r in map(normalize_record, records):
        summary.append({
            "date": r.get("date"),
            "crop": r.get("crop_type"),
            "qty": r["units_sold"],
            "unit": r.get("unit_type"),
            "price": r["unit_price"],
            "total": r["total_sale"],
            "farmer": f"{r.get('farmer_name')} ({r.get('farmer_phone')})",
            "customer": f"{r.get('customer_name')} ({r.get('customer_phone')})",
        })
    return summary


def analyze_sales(records: Iterable[Dict[str, Any]]) -> str:
    """Ask Gemini for an audit report over the given sale records. Never raises."""
    if not config.GOOGLE_API_KEY:
        return "API Key not configured. Please ensure your environment is set up correctly."

    prompt = AUDIT_PROMPT.format(sales=json.dumps(summarize(records), indent=2))
    try:
        genai.configure(api_key=config.GOOGLE_API_KEY)
        model = genai.GenerativeModel(config.GEMINI_MODEL)
        response = model.generate_content(
            prompt,
            generation_config={"temperature": 0.7, "top_p": 0.95},
        )
        return response.text or "No analysis could be generated."
    except Exception as e:
        logger.error("Gemini analysis failed: %s", e)
        return f"Error generating AI report: {e}"
