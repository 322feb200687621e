#!/usr/bin/env python3
"""Rebuild the timestamped transcript of a call from server logs.

The server logs every finished call as TRANSCRIPT_DUMP|N/M|{json} lines.

Usage:
    python scripts/call_transcript.py                      # last call from fly logs
    python scripts/call_transcript.py --file server.log    # read a saved log
    fly logs -a homecall | python scripts/call_transcript.py --file -
    python scripts/call_transcript.py --raw                # raw JSON
    python scripts/call_transcript.py --call-id call_abc   # specific call
    python scripts/call_transcript.py --since 2h           # look back 2 hours
"""

import argparse
import json
import shutil
import subprocess
import sys


def parse_transcript_lines(lines: list[str], call_id: str | None = None) -> list[dict]:
    """Parse TRANSCRIPT_DUMP lines from log output into transcript dicts.

    Reassembles multi-chunk dumps. Returns complete transcripts, most recent
    last. If call_id is given, only that call's transcripts are returned.
    """
    chunk_groups: dict[int, dict[int, str]] = {}
    group_counter = 0

    for line in lines:
        if "TRANSCRIPT_DUMP|" not in line:
            continue

        dump_part = line[line.index("TRANSCRIPT_DUMP|"):]
        parts = dump_part.split("|", 2)
        if len(parts) < 3:
            continue

        try:
            chunk_num, _total = (int(n) for n in parts[1].split("/"))
        except ValueError:
            continue

        if chunk_num == 1:
            group_counter += 1
        chunk_groups.setdefault(group_counter, {})[chunk_num] = parts[2]

    transcripts = []
    for group_id in sorted(chunk_groups):
        chunks = chunk_groups[group_id]
        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue

        if call_id and first.get("call_id") != call_id:
            continue

        entries = list(first.get("entries", []))
        for i in sorted(chunks):
            if i == 1:
                continue
            try:
                entries.extend(json.loads(chunks[i]).get("entries", []))
            except json.JSONDecodeError:
                continue

        first["entries"] = entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Format a transcript dict for reading, marking slow gaps between lines."""
    lines = []

    call_id = transcript.get("call_id", "unknown")
    phone = transcript.get("phone") or "unknown"
    duration = transcript.get("duration_s", 0)
    outcome = transcript.get("outcome", "unknown")
    lines.append(f"Call {call_id} | {phone} | {duration}s | {outcome}")
    lines.append("═" * 55)
    lines.append("")

    entries = transcript.get("entries", [])
    prev_t = None

    for entry in entries:
        t = entry.get("t", 0.0)

        if prev_t is not None:
            gap = t - prev_t
            if gap >= gap_threshold:
                slow = " ⚠ SLOW" if gap >= 5.0 else ""
                lines.append(f"      ┆ +{gap:.1f}s{slow}")

        speaker = {"agent": "Agent", "caller": "Caller"}.get(entry.get("role", ""), entry.get("role", "?"))
        lines.append(f"{t:5.1f}s {speaker}: {entry.get('content', '')}")
        prev_t = t

    if entries:
        lines.append(f"{duration:5.1f}s ☎ Call ended")

    return "\n".join(lines)


def read_fly_logs(app: str, since: str) -> list[str]:
    fly_cmd = shutil.which("fly") or shutil.which("flyctl")
    if not fly_cmd:
        print("Error: flyctl not found. Install: https://fly.io/docs/flyctl/install/", file=sys.stderr)
        sys.exit(1)

    try:
        result = subprocess.run(
            [fly_cmd, "logs", "-a", app, "--no-tail", "--since", since],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired:
        print("Error: fly logs timed out after 30s", file=sys.stderr)
        sys.exit(1)

    if result.returncode != 0:
        stderr = result.stderr.strip()
        if "not authenticated" in stderr.lower() or "login" in stderr.lower():
            print("Error: Not authenticated with Fly.io. Run: fly auth login", file=sys.stderr)
        else:
            print(f"Error: fly logs failed: {stderr}", file=sys.stderr)
        sys.exit(1)

    return result.stdout.splitlines()


def read_log_file(path: str) -> list[str]:
    if path == "-":
        return sys.stdin.read().splitlines()
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Show the transcript of the last call")
    parser.add_argument("--raw", action="store_true", help="Output raw JSON")
    parser.add_argument("--call-id", type=str, default=None, help="Filter by call id")
    parser.add_argument("--file", type=str, default=None, help="Read logs from a file ('-' for stdin) instead of fly")
    parser.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    parser.add_argument("--since", type=str, default="1h", help="How far back to search fly logs (default: 1h)")
    parser.add_argument("--app", type=str, default="homecall", help="Fly.io app name")
    args = parser.parse_args(argv)

    lines = read_log_file(args.file) if args.file else read_fly_logs(args.app, args.since)
    transcripts = parse_transcript_lines(lines, call_id=args.call_id)

    if not transcripts:
        print("No call transcripts found in the logs.", file=sys.stderr)
        sys.exit(1)

    transcript = transcripts[-1]
    if args.raw:
        print(json.dumps(transcript, indent=2))
    else:
        print(format_transcript(transcript, gap_threshold=args.gap_threshold))


if __name__ == "__main__":
    main()
