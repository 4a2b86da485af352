"""Tests for the system prompt builder."""

from __future__ import annotations

from repochat.rag.prompt import NO_CONTEXT_NOTICE, NOT_FOUND_REPLY, build_system_prompt


def test_tree_in_text_fence():
    prompt = build_system_prompt("src/\n└── a.ts", [])
    assert "```text\nsrc/\n└── a.ts\n```" in prompt


def test_fragments_inside_context_tags():
    prompt = build_system_prompt("t", [("src/a.ts", "const a = 1;"), ("b.md", "# B")])
    start, end = prompt.index("<context>"), prompt.index("</context>")
    block = prompt[start:end]
    assert "File: src/a.ts\nconst a = 1;" in block
    assert "File: b.md\n# B" in block
    assert "untrusted" in block
    assert block.index("src/a.ts") < block.index("b.md")


def test_rules_present():
    prompt = build_system_prompt("t", [("a", "b")])
    assert NOT_FOUND_REPLY in prompt
    assert "filenames" in prompt
    assert "file path" in prompt


def test_no_fragments_notice():
    prompt = build_system_prompt("(no files indexed)", [])
    assert NO_CONTEXT_NOTICE in prompt
    assert "<context>" not in prompt
