import json

from panelgrade.schemas.evaluation import EvaluatorId
from panelgrade.schemas.stream import EventType, ProgressEvent
from panelgrade.utils.sse import SSEDecoder, encode_event


class TestEncodeEvent:
    def test_frame_layout(self):
        frame = encode_event(ProgressEvent(type=EventType.START))
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {"type": "start"}

    def test_camel_case_and_korean_kept(self):
        event = ProgressEvent(
            type=EventType.EVALUATOR_CHUNK, evaluator_id=EvaluatorId.B, content="좋은 답안"
        )
        frame = encode_event(event)
        assert "좋은 답안" in frame
        payload = json.loads(frame[len("data: ") :])
        assert payload == {"type": "evaluator_chunk", "evaluatorId": "B", "content": "좋은 답안"}

    def test_terminal_flags(self):
        assert ProgressEvent(type=EventType.COMPLETE).is_terminal
        assert ProgressEvent(type=EventType.ERROR, content="실패").is_terminal
        assert not ProgressEvent(type=EventType.EVALUATOR_COMPLETE).is_terminal


class TestSSEDecoder:
    def test_single_event(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a": 1}\n\n') == [{"a": 1}]

    def test_event_split_across_chunks(self):
        decoder = SSEDecoder()
        raw = 'data: {"text": "가나다"}\n\n'.encode()
        events = []
        for i in range(len(raw)):
            events.extend(decoder.feed(raw[i : i + 1]))
        assert events == [{"text": "가나다"}]

    def test_crlf_line_endings(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a": 1}\r\n\r\ndata: {"a": 2}\r\n\r\n') == [{"a": 1}, {"a": 2}]

    def test_comments_and_other_fields_are_ignored(self):
        decoder = SSEDecoder()
        raw = b': keep-alive\n\nevent: content_block_delta\nid: 7\ndata: {"a": 1}\n\n'
        assert decoder.feed(raw) == [{"a": 1}]

    def test_done_sentinel_and_non_json_are_skipped(self):
        decoder = SSEDecoder()
        raw = b'data: [DONE]\n\ndata: not json\n\ndata: [1, 2]\n\ndata: {"ok": true}\n\n'
        assert decoder.feed(raw) == [{"ok": True}]

    def test_multiline_data_is_joined(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a":\ndata: 1}\n\n') == [{"a": 1}]

    def test_close_flushes_unterminated_event(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a": 1}') == []
        assert decoder.close() == [{"a": 1}]
