"""System prompt builder — seeds a new conversation with the tool catalog and policy."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from workchat.agent.messages import SystemMessage
from workchat.agent.tools import ToolDescriptor

_INTRO = (
    "You must help the user find needed information through the collaboration platforms "
    "and automatically enhance vague requests to provide useful results without asking "
    "for clarification."
)

_PLATFORM_ROUTING = """## FOR PLATFORM-SPECIFIC REQUESTS
- "What's in my email" → Focus on email and calendar tools
- "Show me Slack messages" → Focus on Slack tools
- "What's in Jira" → Focus on Jira tools
- "Check Confluence" → Focus on Confluence tools
- "What changed in my repos" → Focus on source hosting tools
- When request targets specific platform, use only that platform's tools
- Search across platforms if no platform is specified"""


@dataclass(frozen=True)
class UserContext:
    """Who is asking; every field is optional."""

    display_name: str | None = None
    platform_user_id: str | None = None
    timezone: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.display_name or self.platform_user_id or self.timezone)


def _user_context_block(user_context: UserContext | None) -> str:
    if user_context is None or user_context.is_empty:
        return ""
    lines = ["## USER CONTEXT"]
    if user_context.display_name:
        lines.append(f"- Name: {user_context.display_name}")
    if user_context.platform_user_id:
        lines.append(f"- Platform User ID: {user_context.platform_user_id}")
    if user_context.timezone:
        lines.append(f"- User Timezone: {user_context.timezone}")
    return "\n".join(lines)


def _vague_request_block(tool_names: set[str], broad_tools: Sequence[str]) -> str:
    preferred = [name for name in broad_tools if name in tool_names]
    first = (
        f"- Prioritize tools {' '.join(preferred)}"
        if preferred
        else "- Prioritize cross-platform tools"
    )
    return "\n".join([
        '## FOR VAGUE REQUEST like "find me something" or "show me something important":',
        first,
        "- Prioritize recent content over keyword search: chat messages, emails, latest activity",
        "- Aim for more than 30 pieces of information if request is vague",
        "- Concise responses",
        "- Put upcoming meetings & events after works and discussions",
        "- Do not translate, response in original language",
        "- List actionable next steps based on the search results "
        '(e.g., "Reply to John\'s message about the project deadline")',
    ])


def _quality_block(max_rounds: int) -> str:
    return "\n".join([
        "## QUALITY ASSURANCE",
        "- Do not display any User ID / Message ID in response",
        "- Be persistent in finding relevant results before responding",
        "- If initial results are poor, do additional search rounds with different approaches",
        "- Never ask follow-up questions or suggest ways to make requests more specific",
        f"- Stop calling tools and respond with contents after {max_rounds} rounds of tool calling",
    ])


def build_system_prompt(
    tools: Sequence[ToolDescriptor],
    user_context: UserContext | None = None,
    now: datetime | None = None,
    *,
    max_rounds: int = 10,
    broad_tools: Sequence[str] = (),
) -> SystemMessage:
    """Build the system message for a new conversation.

    Pure: the same inputs always give the same text.
    """
    current = now or datetime.now(UTC)
    tools_list = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)

    parts = [
        _INTRO,
        f"Current Date/Time: {current.isoformat()}",
        _user_context_block(user_context),
        f"Available tools:\n{tools_list}",
        _vague_request_block({tool.name for tool in tools}, broad_tools),
        _PLATFORM_ROUTING,
        _quality_block(max_rounds),
    ]
    return SystemMessage("\n\n".join(part for part in parts if part), timestamp=current)
