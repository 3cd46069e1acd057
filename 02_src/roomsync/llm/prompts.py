"""Prompts shared by the assistant providers."""

SYSTEM_PROMPT = """Always structure your answer with markdown:

**Formatting rules:**
- Use ## headers for main sections
- Use ### headers for subsections
- Use - or 1. lists when enumerating items
- Mark important keywords with **bold**
- Wrap code blocks in ```language fences
- Wrap inline code in `backticks`
- Split the answer into short paragraphs with line breaks

**Do not:**
- Write one long unbroken paragraph
- List plain text without any structure"""

DEFAULT_FILE_PROMPT = "Please analyze the attached files."
DEFAULT_GREETING = "Hello!"
