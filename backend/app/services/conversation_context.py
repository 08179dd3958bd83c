"""
Conversation Context Assembler

Keeps a bounded window of raw messages per conversation scope and folds
everything older into one growing summary. The assembled context handed to
the generation engine is, in order:

    growing summary -> recent messages -> project summary -> recent modifications
"""

import time
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Awaitable

from app.core.config import settings
from app.core.logging_config import logger
from app.models.conversation import ConversationMessage, MessageRole
from app.services.project_repository import ConversationRepository, ProjectRepository
from app.services.session_cache import SessionCacheService, TTLClass


Summarizer = Callable[[str, str], Awaitable[str]]

SUMMARY_SYSTEM_PROMPT = (
    "You maintain running summaries of a React development conversation. "
    "Return only the summary text, no JSON."
)

CONTEXT_CACHE_KEY = "conversation_context"


def format_message_line(message: ConversationMessage) -> str:
    text = f"[{message.role.upper()}]: {message.content}"
    if message.file_modifications:
        text += f" (Modified: {', '.join(message.file_modifications)})"
    return text


def build_summary_prompt(messages: List[ConversationMessage], existing_summary: Optional[str]) -> str:
    new_messages_text = "\n\n".join(format_message_line(m) for m in messages)

    if existing_summary:
        return f"""Update this existing conversation summary by incorporating the new messages:

**EXISTING SUMMARY:**
{existing_summary}

**NEW MESSAGES TO ADD:**
{new_messages_text}

**Instructions:**
- Merge the new information into the existing summary
- Keep the summary concise but comprehensive
- Focus on: what was built/modified, key changes made, approaches used, files affected
- Include the success or failure of each change and when it happened
- Return only the updated summary text, no JSON"""

    return f"""Create a concise summary of this React development conversation:

**MESSAGES:**
{new_messages_text}

**Instructions:**
- Focus on: what was built/modified, key changes made, approaches used, files affected
- Include the success or failure of each change and when it happened
- Keep it concise but informative for future context
- Return only the summary text, no JSON"""


def fallback_summary(messages: List[ConversationMessage], existing_summary: Optional[str]) -> str:
    """Deterministic digest used when the summarizer is unavailable"""
    digest_lines = []
    for message in messages:
        line = f"- {message.created_at.isoformat() if message.created_at else ''} [{message.role}] {message.content[:120]}"
        if message.approach:
            line += f" | approach: {message.approach}"
        if message.file_modifications:
            line += f" | files: {', '.join(message.file_modifications)}"
        if message.success is not None:
            line += f" | success: {message.success}"
        digest_lines.append(line)
    digest = "\n".join(digest_lines)

    if existing_summary:
        return f"{existing_summary}\n\nAdditional changes ({len(messages)} more messages):\n{digest}"
    return f"Development conversation ({len(messages)} messages):\n{digest}"


def format_modification_summary(change: Dict[str, Any]) -> str:
    summary = "MODIFICATION COMPLETED:\n"
    summary += f"Request: \"{change.get('prompt', '')}\"\n"
    summary += f"Approach: {change.get('approach', 'UNKNOWN')}\n"
    summary += f"Success: {change.get('success', False)}\n"

    created = change.get("files_created") or []
    if created:
        summary += "Created files:\n" + "".join(f"  - {f}\n" for f in created)

    modified = change.get("files_modified") or []
    if modified:
        summary += "Modified files:\n" + "".join(f"  - {f}\n" for f in modified)

    if change.get("reasoning"):
        summary += f"Reasoning: {change['reasoning']}\n"
    if not change.get("success") and change.get("error"):
        summary += f"Error: {change['error']}\n"

    summary += f"Timestamp: {datetime.utcnow().isoformat()}"
    return summary


class ConversationContextAssembler:
    """Bounded conversation memory with a single growing summary per scope"""

    def __init__(
        self,
        conversations: ConversationRepository,
        projects: ProjectRepository,
        cache: SessionCacheService,
        summarizer: Optional[Summarizer] = None,
        window_size: Optional[int] = None,
    ):
        self.conversations = conversations
        self.projects = projects
        self.cache = cache
        self.summarizer = summarizer
        self.window_size = window_size or settings.CONTEXT_WINDOW_SIZE

    async def add_message(
        self,
        scope: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> ConversationMessage:
        """Persist a message, then fold any overflow into the summary"""
        metadata = dict(metadata or {})
        message = await self.conversations.add_message(
            scope=scope,
            role=role,
            content=content,
            project_id=metadata.pop("project_id", None),
            file_modifications=metadata.pop("file_modifications", None),
            approach=metadata.pop("approach", None),
            success=metadata.pop("success", None),
            extra_data=metadata or None,
        )

        await self._maintain_window(scope)
        if session_id:
            await self.invalidate(session_id)
        return message

    async def _maintain_window(self, scope: str) -> None:
        messages = await self.conversations.list_messages(scope)
        if len(messages) <= self.window_size:
            return

        overflow = messages[:len(messages) - self.window_size]
        existing = await self.conversations.get_summary(scope)
        existing_text = existing.summary if existing else None

        new_summary = await self._summarize(overflow, existing_text)
        await self.conversations.upsert_summary(
            scope=scope,
            summary=new_summary,
            added_messages=len(overflow),
            start_time=overflow[0].created_at,
            end_time=overflow[-1].created_at,
        )
        # Only drop raw messages once their content is in the summary
        await self.conversations.delete_messages([str(m.id) for m in overflow])
        logger.info(f"Folded {len(overflow)} messages into summary for scope {scope}")

    async def _summarize(self, messages: List[ConversationMessage], existing: Optional[str]) -> str:
        if self.summarizer is not None:
            try:
                summary = await self.summarizer(build_summary_prompt(messages, existing), SUMMARY_SYSTEM_PROMPT)
                if summary:
                    return summary
            except Exception as e:
                logger.warning(f"Summarizer failed, using deterministic digest: {e}")
        return fallback_summary(messages, existing)

    async def get_context(
        self,
        scope: str,
        session_id: Optional[str] = None,
        project_summary: Optional[str] = None,
    ) -> str:
        """
        Summary block, recent window, project summary and the session's
        recent modifications, in that order.

        Cached per session as {scope: context}. An explicit project_summary
        bypasses the cache since it is not part of the key.
        """
        use_cache = session_id is not None and project_summary is None
        cached: Dict[str, str] = {}
        if use_cache:
            stored = await self.cache.get_session_state(session_id, CONTEXT_CACHE_KEY)
            if isinstance(stored, dict):
                cached = stored
            if isinstance(cached.get(scope), str):
                return cached[scope]

        context = await self._conversation_block(scope)

        if project_summary is None:
            active = await self.projects.get_active_project_summary()
            project_summary = active.summary if active else None
        if project_summary:
            context += f"\n\n**PROJECT SUMMARY:**\n{project_summary}"

        if session_id:
            context += await self._modification_block(session_id)
        if use_cache:
            cached[scope] = context
            await self.cache.set_session_state(session_id, CONTEXT_CACHE_KEY, cached, TTLClass.SESSION)

        return context

    async def invalidate(self, session_id: str) -> None:
        """Drop every cached context of the session"""
        await self.cache.delete_session_state(session_id, CONTEXT_CACHE_KEY)

    async def _conversation_block(self, scope: str) -> str:
        context = ""
        summary = await self.conversations.get_summary(scope)
        if summary:
            context += f"**CONVERSATION SUMMARY ({summary.message_count} previous messages):**\n"
            context += f"{summary.summary}\n\n"

        recent = (await self.conversations.list_messages(scope))[-self.window_size:]
        if recent:
            context += "**RECENT MESSAGES:**\n"
            for index, message in enumerate(recent, start=1):
                context += f"{index}. [{message.role.upper()}]: {message.content}\n"
                if message.file_modifications:
                    context += f"   Modified: {', '.join(message.file_modifications)}\n"
                if message.approach:
                    context += f"   Approach: {message.approach}\n"
                if message.success is not None:
                    context += f"   Success: {message.success}\n"
        return context

    async def _modification_block(self, session_id: str) -> str:
        changes = await self.cache.get_modification_changes(session_id)
        recent = changes[-settings.CONTEXT_MODIFICATION_ENTRIES:]
        if not recent:
            return ""

        block = "\n\n**RECENT MODIFICATIONS:**\n"
        for index, change in enumerate(recent, start=1):
            block += f"{index}. {change.get('approach', 'UNKNOWN')} modification:\n"
            block += f"   Request: \"{change.get('prompt', '')}\"\n"
            if change.get("files_created"):
                block += f"   Created: {', '.join(change['files_created'])}\n"
            if change.get("files_modified"):
                block += f"   Modified: {', '.join(change['files_modified'])}\n"
            block += f"   Success: {change.get('success')}\n"
            block += f"   When: {change.get('timestamp')}\n\n"
        return block

    async def record_modification(self, scope: str, session_id: str, change: Dict[str, Any],
                                  project_id: Optional[str] = None) -> None:
        """Write the modification summary message and append to the session change log"""
        files_created = list(change.get("files_created") or [])
        files_modified = list(change.get("files_modified") or [])
        approach = change.get("approach", "UNKNOWN")
        prompt = change.get("prompt", "")

        await self.add_message(
            scope,
            MessageRole.ASSISTANT.value,
            format_modification_summary(change),
            metadata={
                "project_id": project_id,
                "file_modifications": files_modified + files_created,
                "approach": approach,
                "success": bool(change.get("success")),
                "kind": "modification_summary",
            },
            session_id=session_id,
        )

        await self.cache.add_modification_change(session_id, {
            "type": "modified",
            "file": "session_modification",
            "description": f"{approach}: {prompt[:100]}{'...' if len(prompt) > 100 else ''}",
            "timestamp": time.time(),
            "prompt": prompt,
            "approach": approach,
            "files_modified": files_modified,
            "files_created": files_created,
            "success": bool(change.get("success")),
        })
        await self.invalidate(session_id)

    async def get_conversation(self, scope: str) -> Dict[str, Any]:
        messages = await self.conversations.list_messages(scope)
        summary = await self.conversations.get_summary(scope)
        summarized = summary.message_count if summary else 0
        return {
            "scope": scope,
            "messages": [
                {
                    "id": str(m.id),
                    "role": m.role,
                    "content": m.content,
                    "file_modifications": m.file_modifications or [],
                    "approach": m.approach,
                    "success": m.success,
                    "created_at": m.created_at.isoformat() if m.created_at else None,
                }
                for m in messages
            ],
            "summary": {
                "summary": summary.summary,
                "message_count": summary.message_count,
                "start_time": summary.start_time.isoformat() if summary.start_time else None,
                "end_time": summary.end_time.isoformat() if summary.end_time else None,
            } if summary else None,
            "total_messages": summarized + len(messages),
        }

    async def clear(self, scope: str, session_id: Optional[str] = None) -> int:
        removed = await self.conversations.clear_scope(scope)
        if session_id:
            await self.invalidate(session_id)
        logger.info(f"Cleared conversation scope {scope} ({removed} messages)")
        return removed
