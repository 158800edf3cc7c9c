"""
Enrichment Prompts
Renders the enrichment and consensus prompts from the versioned YAML templates
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from app.config import get_settings

TEMPLATES_FILE = Path(__file__).parent.parent / "prompts" / "enrichment.yaml"


@lru_cache()
def load_templates() -> Dict[str, Any]:
    """Parse the template file once; templates are keyed by name"""
    with open(TEMPLATES_FILE, "r") as f:
        data = yaml.safe_load(f)
    data["templates"] = {template["name"]: template for template in data.get("templates", [])}
    return data


def _render_template(template_text: str, context: Dict[str, Any]) -> str:
    """Simple {variable} substitution; JSON braces in the template are left alone"""
    rendered = template_text
    for key, value in context.items():
        placeholder = f"{{{key}}}"
        if placeholder in rendered:
            rendered = rendered.replace(placeholder, str(value))
    return rendered.strip()


def _template(name: str) -> str:
    return load_templates()["templates"][name]["template"]


def get_system_prompt(match_mode: Optional[str] = None) -> str:
    settings = get_settings()
    modes = load_templates()["mode_instructions"]
    mode = match_mode or settings.ENRICHMENT_MATCH_MODE
    return _render_template(_template("system"), {
        "mode_instructions": modes.get(mode, modes["fuzzy"]),
        "language": settings.ENRICHMENT_RESPONSE_LANGUAGE,
    })


def customer_context(customer: Any) -> Dict[str, Optional[str]]:
    """Known facts about a customer, from an ORM row or a plain dict"""
    keys = ["name", "email", "phone", "address", "city", "industry", "website", "notes"]
    if isinstance(customer, dict):
        return {key: customer.get(key) for key in keys}
    return {key: getattr(customer, key, None) for key in keys}


def get_enrichment_prompt(customer: Any, fields: List[str]) -> str:
    settings = get_settings()
    context = customer_context(customer)
    labels = [
        ("name", "Company/Business Name"),
        ("email", "Known Email"),
        ("phone", "Known Phone"),
        ("address", "Known Address"),
        ("city", "City"),
        ("industry", "Industry"),
        ("website", "Known Website"),
        ("notes", "Notes"),
    ]
    customer_info = "\n".join(
        f"{label}: {context[key]}" for key, label in labels if context.get(key)
    )

    descriptions = load_templates()["field_descriptions"]
    requested_fields = "\n".join(f"- {field}: {descriptions.get(field, field)}" for field in fields)

    return _render_template(_template("enrichment"), {
        "customer_info": customer_info,
        "requested_fields": requested_fields,
        "region": settings.ENRICHMENT_REGION_HINT,
        "language": settings.ENRICHMENT_RESPONSE_LANGUAGE,
    })


def get_consensus_system_prompt() -> str:
    return _render_template(_template("consensus_system"), {
        "language": get_settings().ENRICHMENT_RESPONSE_LANGUAGE,
    })


def get_consensus_prompt(field: str, results: List[Dict[str, Any]]) -> str:
    lines = "\n".join(
        f"Result {i + 1} ({r['provider']}, confidence {r['score']}): {json.dumps(r['value'], ensure_ascii=False)}"
        for i, r in enumerate(results)
    )
    return _render_template(_template("consensus"), {
        "field": field,
        "results": lines,
        "language": get_settings().ENRICHMENT_RESPONSE_LANGUAGE,
    })
