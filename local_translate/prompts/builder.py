# Prompt builder for translation requests.

from __future__ import annotations

from typing import Any, Dict, List
import re


_TEMPLATE_TOKEN_PATTERN = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}")


def render_template(template: str, mapping: Dict[str, str]) -> str:
    """Replace every ``{{name}}`` token found in ``mapping``; unknown tokens stay."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return mapping.get(key, match.group(0))

    return _TEMPLATE_TOKEN_PATTERN.sub(_replace, template)


def build_messages(
    profile: Any,
    source_text: str,
    source_language: str,
    target_language: str,
) -> List[Dict[str, str]]:
    system_template = str(getattr(profile, "system_prompt", "") or "")
    user_template = str(getattr(profile, "user_prompt_template", "") or "")

    user_mapping = {
        "source_language": str(source_language or ""),
        "target_language": str(target_language or ""),
        "input_text": str(source_text or ""),
    }
    # the system prompt only ever sees the target language
    system_mapping = {"target_language": user_mapping["target_language"]}

    if user_template.strip():
        user_content = render_template(user_template, user_mapping)
    else:
        user_content = user_mapping["input_text"]

    return [
        {"role": "system", "content": render_template(system_template, system_mapping)},
        {"role": "user", "content": user_content},
    ]
