"""
Unit Tests for the Conversation Context Assembler
"""
import pytest
from faker import Faker

from app.services.conversation_context import (
    CONTEXT_CACHE_KEY,
    ConversationContextAssembler,
    fallback_summary,
    format_modification_summary,
)

fake = Faker()


@pytest.fixture
def assembler(conversations, projects, cache, mock_claude):
    return ConversationContextAssembler(
        conversations, projects, cache, summarizer=mock_claude.summarize, window_size=3,
    )


async def _add(assembler, scope, count, session_id=None):
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        await assembler.add_message(scope, role, f"message {i}: {fake.sentence()}", session_id=session_id)


class TestWindow:
    """Tests for the bounded message window"""

    @pytest.mark.asyncio
    async def test_window_not_exceeded(self, assembler, conversations):
        await _add(assembler, "project:1", 3)

        assert len(await conversations.list_messages("project:1")) == 3
        assert await conversations.get_summary("project:1") is None

    @pytest.mark.asyncio
    async def test_overflow_folded_into_summary(self, assembler, conversations, mock_claude):
        await _add(assembler, "project:1", 5)

        messages = await conversations.list_messages("project:1")
        summary = await conversations.get_summary("project:1")

        assert [m.content.split(":")[0] for m in messages] == ["message 2", "message 3", "message 4"]
        assert summary.summary == mock_claude.summary
        assert summary.message_count == 2

    @pytest.mark.asyncio
    async def test_summary_grows_and_is_updated(self, assembler, conversations, mock_claude):
        """The second fold passes the existing summary back to the summarizer"""
        await _add(assembler, "project:1", 4)
        await _add(assembler, "project:1", 1)

        summary = await conversations.get_summary("project:1")
        assert summary.message_count == 2
        assert "EXISTING SUMMARY" in mock_claude.summary_calls[-1]["prompt"]

    @pytest.mark.asyncio
    async def test_summarizer_failure_uses_digest(self, assembler, conversations, mock_claude):
        mock_claude.fail_summary = True
        await _add(assembler, "project:1", 4)

        summary = await conversations.get_summary("project:1")
        assert summary.summary.startswith("Development conversation (1 messages)")
        assert len(await conversations.list_messages("project:1")) == 3

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, assembler, conversations):
        await _add(assembler, "project:1", 4)
        await _add(assembler, "project:2", 1)

        assert len(await conversations.list_messages("project:2")) == 1
        assert await conversations.get_summary("project:2") is None


class TestGetContext:
    """Tests for assembled context text"""

    @pytest.mark.asyncio
    async def test_sections_in_order(self, assembler, cache):
        await _add(assembler, "project:1", 4)
        await cache.add_modification_change("s1", {"approach": "FULL_FILE", "prompt": "make it blue", "success": True})

        context = await assembler.get_context("project:1", session_id="s1", project_summary="**Project:** Shop")

        positions = [
            context.index("CONVERSATION SUMMARY"),
            context.index("RECENT MESSAGES"),
            context.index("PROJECT SUMMARY"),
            context.index("RECENT MODIFICATIONS"),
        ]
        assert positions == sorted(positions)
        assert "make it blue" in context

    @pytest.mark.asyncio
    async def test_active_project_summary_used_by_default(self, assembler, projects):
        await projects.save_project_summary("**Project:** Gallery")

        context = await assembler.get_context("project:1")
        assert "**Project:** Gallery" in context

    @pytest.mark.asyncio
    async def test_context_cached_until_next_message(self, assembler, cache):
        await _add(assembler, "project:1", 1, session_id="s1")
        first = await assembler.get_context("project:1", session_id="s1")
        assert await cache.get_session_state("s1", CONTEXT_CACHE_KEY) == {"project:1": first}

        await assembler.add_message("project:1", "user", "add a footer", session_id="s1")
        assert await cache.get_session_state("s1", CONTEXT_CACHE_KEY) is None

        second = await assembler.get_context("project:1", session_id="s1")
        assert "add a footer" in second

    @pytest.mark.asyncio
    async def test_cached_context_is_per_scope(self, assembler):
        await assembler.add_message("scope:A", "user", "message for A", session_id="S")
        await assembler.add_message("scope:B", "user", "message for B", session_id="S")

        context_a = await assembler.get_context("scope:A", session_id="S")
        context_b = await assembler.get_context("scope:B", session_id="S")

        assert "message for A" in context_a
        assert "message for B" in context_b
        assert "message for A" not in context_b

    @pytest.mark.asyncio
    async def test_explicit_project_summary_bypasses_cache(self, assembler, cache):
        await assembler.add_message("project:1", "user", "make it blue", session_id="s1")
        await assembler.get_context("project:1", session_id="s1")

        context = await assembler.get_context("project:1", session_id="s1", project_summary="**Project:** Bakery")

        assert "**Project:** Bakery" in context
        assert "**Project:** Bakery" not in (await cache.get_session_state("s1", CONTEXT_CACHE_KEY))["project:1"]

    @pytest.mark.asyncio
    async def test_invalidate_picks_up_new_project_summary(self, assembler, projects):
        await assembler.add_message("project:1", "user", "make it blue", session_id="s1")
        assert "PROJECT SUMMARY" not in await assembler.get_context("project:1", session_id="s1")

        await projects.save_project_summary("**Project:** Gallery")
        await assembler.invalidate("s1")

        assert "**Project:** Gallery" in await assembler.get_context("project:1", session_id="s1")

    @pytest.mark.asyncio
    async def test_empty_scope(self, assembler):
        assert await assembler.get_context("nothing", project_summary="") == ""


class TestModificationRecording:
    """Tests for modification summaries"""

    @pytest.mark.asyncio
    async def test_record_modification(self, assembler, conversations, cache):
        change = {
            "prompt": "Add a contact page",
            "approach": "TARGETED_NODES",
            "files_created": ["src/pages/Contact.tsx"],
            "files_modified": ["src/App.tsx"],
            "success": True,
        }
        await assembler.record_modification("project:1", "s1", change, project_id=None)

        messages = await conversations.list_messages("project:1")
        assert messages[-1].approach == "TARGETED_NODES"
        assert messages[-1].file_modifications == ["src/App.tsx", "src/pages/Contact.tsx"]
        assert "MODIFICATION COMPLETED" in messages[-1].content

        log = await cache.get_modification_changes("s1")
        assert log[-1]["files_created"] == ["src/pages/Contact.tsx"]
        assert log[-1]["description"] == "TARGETED_NODES: Add a contact page"

    def test_failed_modification_includes_error(self):
        text = format_modification_summary({"prompt": "x", "approach": "FULL_FILE", "success": False, "error": "boom"})
        assert "Success: False" in text
        assert "Error: boom" in text


class TestHistory:
    """Tests for conversation history and clearing"""

    @pytest.mark.asyncio
    async def test_total_counts_summarized_messages(self, assembler):
        await _add(assembler, "project:1", 5)

        history = await assembler.get_conversation("project:1")
        assert history["total_messages"] == 5
        assert len(history["messages"]) == 3
        assert history["summary"]["message_count"] == 2

    @pytest.mark.asyncio
    async def test_clear(self, assembler, conversations):
        await _add(assembler, "project:1", 5)

        removed = await assembler.clear("project:1")
        assert removed == 3
        assert await conversations.get_summary("project:1") is None

    def test_fallback_summary_appends(self):
        assert fallback_summary([], "Earlier work").startswith("Earlier work")
