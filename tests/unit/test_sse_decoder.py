from relay_agent.client.stream import SSEDecoder


def test_partial_frames_are_buffered_across_reads() -> None:
    decoder = SSEDecoder()

    assert decoder.feed('data: {"type": "con') == []
    assert decoder.feed('tent", "delta": "a"}\n') == []
    assert decoder.feed('\ndata: {"type": "content", "delta": "b"}\n\n') == [
        {"type": "content", "delta": "a"},
        {"type": "content", "delta": "b"},
    ]


def test_bytes_crlf_and_comment_lines() -> None:
    decoder = SSEDecoder()

    frames = decoder.feed(b': keep-alive\r\n\r\ndata: {"type": "done"}\r\n\r\n')

    assert frames == [{"type": "done"}]


def test_undecodable_frames_are_skipped_and_flush_drains_tail() -> None:
    decoder = SSEDecoder()

    assert decoder.feed("data: not-json\n\ndata: [1, 2]\n\n") == []
    assert decoder.feed('data: {"type": "error"}') == []
    assert decoder.flush() == [{"type": "error"}]
    assert decoder.flush() == []


def test_multibyte_characters_split_across_byte_reads() -> None:
    decoder = SSEDecoder()
    encoded = 'data: {"type": "content", "delta": "café ☕"}\n\n'.encode("utf-8")
    cut = encoded.index("☕".encode("utf-8")) + 1

    assert decoder.feed(encoded[:cut]) == []
    assert decoder.feed(encoded[cut:]) == [{"type": "content", "delta": "café ☕"}]


def test_crlf_split_across_reads() -> None:
    decoder = SSEDecoder()

    assert decoder.feed(b'data: {"type": "done"}\r\n\r') == []
    assert decoder.feed(b"\n") == [{"type": "done"}]
