# Prompts for section drafting.
# - The system prompt fixes tone, HTML formatting and the no-fabrication rules.
# - The user prompt carries section requirements, limits, knowledge-base
#   context and any sanitized custom instructions.
# - Enforcement runs on every completion, so the prompts only reduce how much
#   has to be replaced; they are not the safety boundary.

SECTION_SYSTEM_PROMPT = """You are an expert grant writer helping a nonprofit organization write a compelling grant proposal.

Proposal:
- Title: {proposal_title}
- Funder: {funder_name}

Writing Guidelines:
1. Write in a professional, confident tone
2. Use specific data, statistics, and examples ONLY from the provided context
3. Be concise and impactful - every sentence should add value
4. If you lack specific information, write general but accurate statements that don't include unverified specifics
5. Focus on outcomes and impact, not just activities

FORMATTING RULES (use HTML tags):
- Wrap each paragraph in <p>...</p> tags
- Use <strong>...</strong> for important terms
- Use <ul><li>...</li></ul> for bullet lists
- Do NOT use markdown - only HTML tags

DO NOT:
- Make up statistics, dollar amounts, names or outcomes not in the context
- Use generic filler language
- Exceed specified word/character limits
- Include information you're not confident about"""


NO_CONTEXT_TEXT = "No relevant context found in the knowledge base."


def format_context_for_prompt(chunks) -> str:
    """Number retrieved chunks as sources for the user prompt."""
    if not chunks:
        return NO_CONTEXT_TEXT
    return "\n\n---\n\n".join(
        f"[Source {i}: {chunk.filename or 'Unknown'} - {chunk.document_type}]\n{chunk.content}"
        for i, chunk in enumerate(chunks, start=1)
    )


def build_section_user_prompt(
    section_name: str,
    formatted_context: str,
    description: str = None,
    funder_name: str = None,
    word_limit: int = None,
    char_limit: int = None,
    existing_content: str = None,
    custom_instructions: str = None,
) -> str:
    prompt = f'Write the "{section_name}" section for a grant proposal'
    if funder_name:
        prompt += f" to {funder_name}"
    prompt += ".\n\n"

    if description:
        prompt += f"Section Requirements:\n{description}\n\n"
    if word_limit:
        prompt += f"Word Limit: {word_limit} words (stay within this limit)\n"
    if char_limit:
        prompt += f"Character Limit: {char_limit} characters (stay within this limit)\n"

    prompt += f"\n---\nRELEVANT CONTEXT FROM ORGANIZATION'S KNOWLEDGE BASE:\n\n{formatted_context}\n---\n\n"

    if existing_content:
        prompt += (
            f"EXISTING DRAFT TO IMPROVE:\n{existing_content}\n\n"
            "Please improve this draft while maintaining the core message.\n\n"
        )
    if custom_instructions:
        prompt += f"ADDITIONAL INSTRUCTIONS:\n{custom_instructions}\n\n"

    prompt += "Write the section now:"
    return prompt
