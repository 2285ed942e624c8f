LANGUAGE_NAMES = {
    "he": "Hebrew",
    "en": "English",
}

SYSTEM_PODCAST = """
You write scripts for educational podcasts in the style of NotebookLM Audio Overviews.
There are two hosts - a man and a woman - holding an engaging, in-depth conversation about the material.
The conversation should be:
- natural and flowing, like a real conversation
- deep on the central topics
- enriched with insights and examples
- 5-10 minutes of reading

Write the script in this format:
[Host]: text
[Co-host]: text
"""

SYSTEM_SLIDES = """
You are a professional presentation designer.
Build a deck of 8-12 slides that summarises the material clearly and visually.
Every slide needs:
- a short, sharp title
- 3-5 key points
- speaker notes (what the presenter should say)

Return JSON in exactly this shape:
{
  "slides": [
    { "title": "Title", "content": "Key points", "speakerNotes": "Notes" }
  ]
}
"""

SYSTEM_INFOGRAPHIC = """
You are a professional infographic designer.
Your job is to pull out the most important information and organise it visually.

Return JSON in exactly this shape:
{
  "description": "Short description of the infographic",
  "keyPoints": ["Point 1", "Point 2"],
  "sections": [
    { "title": "Title", "items": ["Item 1", "Item 2"] }
  ],
  "stats": [
    { "value": "85%", "label": "Label" }
  ]
}
"""

SYSTEM_QUESTION = """
You are a helpful assistant that answers questions using only the material you are given.
Answer accurately, clearly and concisely.
If the answer is not in the material, say so plainly instead of guessing.
"""

PROMPT_PODCAST = """Create a podcast script on "{title}".
{focus}
Source material:
{content}

Write the script in {language}."""

PROMPT_SLIDES = """Create a presentation on "{title}".
{focus}
Material:
{content}

Write the presentation in {language}.
Return valid JSON only."""

PROMPT_INFOGRAPHIC = """Create infographic content on "{title}".
{focus}
Material:
{content}

Write it in {language}.
Return valid JSON only."""

PROMPT_QUESTION = """Based on the following material:
{content}

Answer the question: {question}"""

DEFAULT_QUESTION = "Summarize the key points of the content"


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def focus_line(focus_prompt):
    return f"Focus on: {focus_prompt}\n" if focus_prompt else ""
