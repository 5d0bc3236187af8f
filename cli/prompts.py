"""Interactive prompts built on prompt_toolkit."""

from typing import Optional

from prompt_toolkit import PromptSession

from cli.constants import PASSWORD_PROMPT_TEXT, STYLE, YELLOW, RESET


async def prompt_password(rejected_attempts: int) -> Optional[str]:
    """
    Ask for a password after the sender rejected the previous one.

    Args:
        rejected_attempts: Number of rejected attempts so far

    Returns:
        The entered password, or None if the prompt was cancelled or left empty
    """
    print(f"{YELLOW}Invalid password (attempt {rejected_attempts}).{RESET}")
    session: PromptSession = PromptSession(style=STYLE)
    try:
        password = await session.prompt_async([("class:prompt", PASSWORD_PROMPT_TEXT)], is_password=True)
    except (EOFError, KeyboardInterrupt):
        return None
    return password.strip() or None
