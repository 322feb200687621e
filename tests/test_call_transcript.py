import json
import sys
import os
import pytest

# Add scripts to path so we can import the module
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from call_transcript import parse_transcript_lines, format_transcript, main


def dump_line(body: dict, n: int = 1, total: int = 1, prefix: str = "") -> str:
    return f"{prefix}TRANSCRIPT_DUMP|{n}/{total}|{json.dumps(body)}"


class TestParseTranscriptLines:
    def test_single_chunk(self):
        dump = {
            "call_id": "call_one",
            "phone": "+15125551234",
            "outcome": "completed",
            "duration_s": 52.1,
            "entries": [
                {"t": 0.0, "role": "agent", "content": "Hello."},
                {"t": 2.3, "role": "caller", "content": "Hi."},
            ],
        }
        result = parse_transcript_lines([dump_line(dump, prefix="2026-01-01T00:00:00Z app[1] INFO ")])
        assert len(result) == 1
        assert result[0]["call_id"] == "call_one"
        assert len(result[0]["entries"]) == 2

    def test_multi_chunk_reassembly(self):
        lines = [
            dump_line({"call_id": "call_multi", "entries": [{"t": 0.0, "role": "agent", "content": "A"}]}, 1, 2),
            dump_line({"entries": [{"t": 5.0, "role": "caller", "content": "B"}]}, 2, 2),
        ]
        result = parse_transcript_lines(lines)
        assert len(result) == 1
        assert [e["content"] for e in result[0]["entries"]] == ["A", "B"]

    def test_call_id_filter(self):
        lines = [
            dump_line({"call_id": "call_a", "entries": []}),
            dump_line({"call_id": "call_b", "entries": []}),
        ]
        result = parse_transcript_lines(lines, call_id="call_a")
        assert [t["call_id"] for t in result] == ["call_a"]

    def test_ignores_other_lines_and_bad_json(self):
        lines = ["INFO starting", "TRANSCRIPT_DUMP|1/1|{not json", "TRANSCRIPT_DUMP|x|{}"]
        assert parse_transcript_lines(lines) == []


class TestFormatTranscript:
    def test_header_gaps_and_end(self):
        transcript = {
            "call_id": "call_fmt",
            "phone": "+15125551234",
            "outcome": "emergency_transfer",
            "duration_s": 20.0,
            "entries": [
                {"t": 0.0, "role": "agent", "content": "Hello."},
                {"t": 2.5, "role": "caller", "content": "Water everywhere."},
                {"t": 9.0, "role": "agent", "content": "Transferring you now."},
            ],
        }
        output = format_transcript(transcript)
        lines = output.splitlines()
        assert lines[0] == "Call call_fmt | +15125551234 | 20.0s | emergency_transfer"
        assert "Caller: Water everywhere." in output
        assert "+6.5s ⚠ SLOW" in output
        assert "+2.5s" in output and "+2.5s ⚠" not in output
        assert lines[-1].endswith("☎ Call ended")

    def test_unknown_phone(self):
        output = format_transcript({"call_id": "c", "entries": []})
        assert output.splitlines()[0] == "Call c | unknown | 0s | unknown"


class TestMain:
    def test_reads_file(self, tmp_path, capsys):
        log = tmp_path / "server.log"
        log.write_text(dump_line({"call_id": "call_file", "duration_s": 1.0, "entries": [
            {"t": 0.0, "role": "agent", "content": "Hello."},
        ]}) + "\n")
        main(["--file", str(log), "--raw"])
        assert json.loads(capsys.readouterr().out)["call_id"] == "call_file"

    def test_exits_when_nothing_found(self, tmp_path):
        log = tmp_path / "empty.log"
        log.write_text("nothing here\n")
        with pytest.raises(SystemExit):
            main(["--file", str(log)])
