# video_recipe/app/services/prompts.py
"""Prompt templates sent to the vision and text models."""
from __future__ import annotations

FRAME_ANALYSIS = (
    "Describe this cooking step in detail, focusing on the ingredients, techniques, "
    "and any important details visible in the frame. Keep it concise but informative."
)

SOCIAL_MEDIA_DETECTION = (
    "Analyze the provided image carefully and locate any visible social media handles "
    "or usernames (e.g., @username for Instagram/TikTok, YouTube channel names, etc.). "
    "Focus on text overlays or prominent text elements in the image. If a social handle "
    "is detected, respond in this exact format: 'SOCIAL:platform:username' "
    "(e.g., 'SOCIAL:instagram:foodiefromvt'). If no social media handle is visible, "
    "respond with 'SOCIAL:none'. Ignore any blurred faces or unrelated elements in the image."
)

RECIPE_SYSTEM = (
    "You are a culinary expert who writes clear, accurate recipes from descriptions "
    "of cooking videos."
)

RECIPE_SUMMARY = """Based ONLY on the following chronological cooking steps, write the recipe shown in the video.
The title should be appealing, descriptive, and under 60 characters.
The description should be 2-3 sentences summarizing the dish, key ingredients, and cooking methods.
List every ingredient that is mentioned, and write the instructions as numbered steps.

DO NOT invent or add any ingredients or steps that are not mentioned in the provided cooking steps.
ONLY use information that appears in the provided steps.

Cooking steps:
{steps}

Respond with a JSON object with exactly these keys:
{"title": "...", "description": "...", "ingredients": ["..."], "instructions": "..."}"""

JSON_ONLY_SUFFIX = (
    "\n\nYour response MUST be valid JSON. Do not include any text before or after the JSON object."
)


def format_steps(descriptions: list[tuple[float, str]]) -> str:
    """Chronologically numbered steps: `1. [0s] ...`."""
    ordered = sorted(descriptions, key=lambda item: item[0])
    return "\n".join(
        f"{index}. [{timestamp:g}s] {text.strip()}"
        for index, (timestamp, text) in enumerate(ordered, start=1)
    )


def build_recipe_prompt(descriptions: list[tuple[float, str]], template: str | None = None) -> str:
    steps = format_steps(descriptions)
    template = template or RECIPE_SUMMARY
    if "{steps}" in template:
        prompt = template.replace("{steps}", steps)
    else:
        prompt = f"{template}\n\nCooking steps:\n{steps}"
    return prompt + JSON_ONLY_SUFFIX
