"""Tests for line reassembly across chunk boundaries."""

import pytest

from streammux.assembler import LineAssembler
from streammux.session import ParserSession

STREAM = (
    '{"type":"text_delta","text":"Hello"}\n'
    "\n"
    '{"type":"tool_use","id":"t1","name":"Read","input":{"file_path":"a.py"}}\n'
    '{"type":"result","total_cost_usd":0.02}\n'
    '{"type":"text_del'
)


@pytest.fixture
def assembler() -> LineAssembler:
    return LineAssembler()


@pytest.fixture
def session() -> ParserSession:
    return ParserSession(conversation_id="conv-1")


class TestFeed:
    def test_single_complete_line(self, assembler, session) -> None:
        assert assembler.feed(session, '{"a":1}\n') == ['{"a":1}']
        assert session.buffer == ""

    def test_partial_line_is_buffered(self, assembler, session) -> None:
        assert assembler.feed(session, '{"type":"resu') == []
        assert session.buffer == '{"type":"resu'
        assert assembler.feed(session, 'lt"}\n') == ['{"type":"result"}']
        assert session.buffer == ""

    def test_many_lines_in_one_chunk(self, assembler, session) -> None:
        lines = assembler.feed(session, "a\nb\nc\n")
        assert lines == ["a", "b", "c"]

    def test_empty_lines_are_returned(self, assembler, session) -> None:
        assert assembler.feed(session, "\n\nx\n") == ["", "", "x"]

    def test_empty_chunk_is_a_no_op(self, assembler, session) -> None:
        session.buffer = "pending"
        assert assembler.feed(session, "") == []
        assert assembler.feed(session, b"") == []
        assert session.buffer == "pending"

    def test_bytes_are_decoded(self, assembler, session) -> None:
        assert assembler.feed(session, b'{"k":"v"}\n') == ['{"k":"v"}']

    def test_multibyte_character_split_across_chunks(self, assembler, session) -> None:
        encoded = '{"text":"héllo ✓"}\n'.encode()
        split = encoded.index("✓".encode()) + 1  # inside the 3-byte sequence
        assert assembler.feed(session, encoded[:split]) == []
        assert assembler.feed(session, encoded[split:]) == ['{"text":"héllo ✓"}']


class TestChunkBoundaries:
    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 50])
    def test_fixed_size_chunks_match_whole_stream(self, assembler, size) -> None:
        whole_session = ParserSession(conversation_id="whole")
        expected = assembler.feed(whole_session, STREAM)

        chunked_session = ParserSession(conversation_id="chunked")
        got: list[str] = []
        for i in range(0, len(STREAM), size):
            got.extend(assembler.feed(chunked_session, STREAM[i : i + size]))

        assert got == expected
        assert chunked_session.buffer == whole_session.buffer

    def test_no_byte_dropped_or_duplicated(self, assembler, session) -> None:
        fed = ""
        emitted: list[str] = []
        for i in range(0, len(STREAM), 5):
            piece = STREAM[i : i + 5]
            fed += piece
            emitted.extend(assembler.feed(session, piece))
            assert "".join(line + "\n" for line in emitted) + session.buffer == fed


class TestFlush:
    def test_flush_returns_unterminated_tail(self, assembler, session) -> None:
        assembler.feed(session, '{"a":1}\n{"b":2}')
        assert assembler.flush(session) == '{"b":2}'
        assert session.buffer == ""

    def test_flush_with_nothing_pending(self, assembler, session) -> None:
        assembler.feed(session, "done\n")
        assert assembler.flush(session) is None
