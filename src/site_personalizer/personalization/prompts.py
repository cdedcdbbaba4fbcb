"""Prompt templates for summaries and personalizations.

Built-in templates carry two placeholders: ``{content}`` receives the JSON
serialization of the cleaned page fragments and ``{business_name}`` the
business name (empty when unknown).  Substitution is plain string
replacement, so braces inside page content are never interpreted.

Custom templates are caller-supplied prompt text; the content is appended
after it rather than substituted into it.
"""

from __future__ import annotations

import json
from typing import Any

SYSTEM_PROMPT: str = "You are a helpful assistant that analyzes website content."
"""System message sent with every generation request."""

CUSTOM_TEMPLATE_PREFIX: str = "custom_"
"""Template names starting with this prefix take a caller-supplied prompt."""

SUMMARY_TEMPLATE: str = "summary"

_INTRO = """\
Using the following text data from {business_name}'s website, read their copy. Check if they have any blogs, unique phrases, or unique strategies. The goal is for you to find something that would show that you've paid attention to their business in order to create a hyper-personalized opening to a cold email. Make the tone of the sentence friendly, conversational, spartan, and non-corporate. Make it a very brief compliment and only one sentence using an "I" statement, ending with an exclamation point, without using words above a high school reading level. Do not include any quotations or anything else besides the compliment whatsoever.

Use this beginning and finish the rest:
"I was checking out {business_name}'s website and..."

Some great examples would be:
"I really loved reading your blog about transparency in the industry, something that's a crucial issue I've been hearing about"
"I love that you guys are using InteroBOT to scan for competition for you clients, super smart idea!"
"I saw you guys had that accessibility webinar coming up-- thanks for covering such an important topic!"

Do not just repeat what their service does. Pinpoint something and make it personal.

Check to see if you can mention any of these in your response. Only mention it if it actually exists:
1. A recent event coming up that is showed on their website
2. A unique strategy they mention using in their business, such as a bot or framework
3. An award they have on their business
4. A case study showing off an impressive statistic.

Do not make it more than 25 words. If you are unable to find anything relevant or do not have enough information, respond with "Unable", and then why you are not able to provide an output.

Remember, do NOT include any quotation marks or anything else under ANY circumstance.

Website Content: {content}

Output:"""

_PS = """\
Using the following text data from {business_name}'s website, read their copy. Check if they have any blogs, unique phrases, or unique strategies. The goal is for you to find something that would show that you've paid attention to their business in order to create a hyper-personalized opening to a cold email. Make the tone of the sentence friendly but quick. Make it a very brief compliment and only one sentence, without using words above a high school reading level. Do not include any quotations or anything else besides the compliment whatsoever.

Use this beginning and finish the rest:
"PS, Love..."

Some great examples would be:
"that you guys have that blog on accessibility-- great stuff."
"that you're using InteroBOT for your clients-- smart move."
"that case study you guys have with Microsoft."

Do not just repeat what their service does. Pinpoint something and make it personal.

Check to see if you can mention any of these in your response. Only mention it if it actually exists:
1. A recent event coming up that is showed on their website
2. A unique strategy they mention using in their business, such as a bot or framework
3. An award they have on their business
4. A case study showing off an impressive statistic.

Do not make it more than 15 words. If you are unable to find anything relevant or do not have enough information, respond with "Unable", and then why you are not able to provide an output.

Remember, do NOT include any quotation marks or anything else under ANY circumstance.

Website Content: {content}

Output:"""

_SUMMARY = """\
Please give a less than 30 word summary of what this website is about.

Website Content: {content}

Output:"""

BUILTIN_TEMPLATES: dict[str, str] = {
    "intro": _INTRO,
    "ps": _PS,
    SUMMARY_TEMPLATE: _SUMMARY,
}


def serialize_content(content: Any) -> str:
    """Serialize page content the way it is embedded in prompts."""
    return json.dumps(content, ensure_ascii=False, separators=(",", ":"))


def is_custom_template(name: str) -> bool:
    return name.startswith(CUSTOM_TEMPLATE_PREFIX)


def render_builtin(name: str, content: Any, business_name: str = "") -> str:
    """Fill a built-in template.

    Raises:
        KeyError: If *name* is not a built-in template.
    """
    template = BUILTIN_TEMPLATES[name]
    # Content goes in last so placeholder text inside a page stays literal.
    return template.replace("{business_name}", business_name).replace(
        "{content}", serialize_content(content)
    )


def render_custom(prompt: str, content: Any) -> str:
    """Append serialized content to a caller-supplied prompt."""
    return f"{prompt}\n\nWebsite content: {serialize_content(content)}"
