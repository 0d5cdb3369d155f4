from agentloop.util.context_trim import trim_messages, truncate_content


def test_trim_messages_keeps_framing_and_latest_turn():
    messages = [
        {"role": "system", "content": "system prompt"},
        {"role": "user", "content": "task framing"},
        {"role": "assistant", "content": "first assistant " * 5},
        {"role": "user", "content": "tool one " * 5},
        {"role": "assistant", "content": "second assistant"},
        {"role": "user", "content": "latest user"},
    ]
    trimmed = trim_messages(messages, max_chars=80)
    contents = [msg["content"] for msg in trimmed]
    assert contents[:2] == ["system prompt", "task framing"]
    assert contents[-1] == "latest user"
    assert "tool one " * 5 not in contents
    assert sum(len(item) for item in contents) <= 80


def test_trim_messages_does_not_mutate_input():
    messages = [{"role": "user", "content": "x" * 100}]
    trim_messages(messages, max_chars=10, max_single_message_chars=20)
    assert messages[0]["content"] == "x" * 100


def test_truncate_content_keeps_tail_on_errors():
    content = "a" * 9000 + "Traceback: boom\n" + "b" * 800
    trimmed = truncate_content(content, 4000)
    assert trimmed.startswith("[TRUNCATED]")
    assert "Traceback" in trimmed
    assert len(trimmed) <= 4000


def test_truncate_content_keeps_head_otherwise():
    content = "hello " * 2000
    trimmed = truncate_content(content, 4000)
    assert trimmed.endswith("[TRUNCATED]")
    assert trimmed.startswith("hello ")
    assert len(trimmed) <= 4000
