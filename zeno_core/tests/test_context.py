from zeno_core.chat.context import (
    DOCUMENT_CONTEXT_HEADER,
    ContextAssembler,
    ContextDocument,
    truncate_for_context,
)
from zeno_core.domain.conversation import MessageRecord
from zeno_core.domain.models import ChatMessage


def _history(n, first_role="user"):
    roles = ["user", "assistant"] if first_role == "user" else ["assistant", "user"]
    return [MessageRecord(role=roles[i % 2], content=f"m{i + 1}") for i in range(n)]


def test_window_keeps_last_twenty_in_order():
    msgs = _history(25)
    out = ContextAssembler().assemble(msgs)
    assert len(out) == 20
    assert [m.content for m in out] == [m.content for m in msgs[5:]]
    assert out[0].content == "m6"


def test_short_history_is_kept_whole():
    msgs = _history(3)
    out = ContextAssembler().assemble(msgs)
    assert [(m.role, m.content) for m in out] == [(m.role, m.content) for m in msgs]


def test_empty_history():
    assert ContextAssembler().assemble([], [ContextDocument("a.txt", "text/plain", "x")]) == []


def test_document_prefix_is_prepended_to_first_user_message():
    docs = [ContextDocument("a.txt", "text/plain", "alpha"), ContextDocument("b.md", "text/markdown", "beta")]
    msgs = [ChatMessage(role="user", content="What is in a.txt?")]
    asm = ContextAssembler()
    out = asm.assemble(msgs, docs)

    prefix = asm.build_prefix(docs)
    assert prefix == (
        DOCUMENT_CONTEXT_HEADER
        + "\n\n"
        + '--- FILE: "a.txt" (text/plain) ---\nalpha\n--- END FILE ---'
        + "\n\n"
        + '--- FILE: "b.md" (text/markdown) ---\nbeta\n--- END FILE ---'
        + "\n\n"
    )
    assert out[0].content == prefix + "What is in a.txt?"
    # 原始消息不被修改
    assert msgs[0].content == "What is in a.txt?"


def test_prefix_skipped_when_window_starts_with_assistant():
    msgs = _history(21)  # 窗口从 m2（assistant）开始
    out = ContextAssembler().assemble(msgs, [ContextDocument("a.txt", "text/plain", "alpha")])
    assert out[0].role == "assistant"
    assert all("--- FILE:" not in m.content for m in out)


def test_prefix_is_deterministic_and_empty_without_documents():
    asm = ContextAssembler()
    docs = [ContextDocument("a.txt", "text/plain", "alpha")]
    assert asm.build_prefix(docs) == asm.build_prefix(list(docs))
    assert asm.build_prefix([]) == ""


def test_long_documents_are_truncated():
    text = "a" * 5000 + "b" * 5000
    out = truncate_for_context(text, 8000)
    assert out.startswith("a" * 4000)
    assert out.endswith("b" * 4000)
    assert "(10000 chars total, 2000 omitted)" in out
    assert truncate_for_context("short", 8000) == "short"

    asm = ContextAssembler(max_doc_chars=100)
    prefix = asm.build_prefix([ContextDocument("big.txt", "text/plain", "z" * 1000)])
    assert "content truncated for length" in prefix
