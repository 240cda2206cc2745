"""Tests for the retention sweep command."""

import json
import os
import time

from convo import cleanup
from convo.storage import conversations
from factories import make_transcript


def age(data_dir, conversation_id, days):
    path = data_dir / "conversations" / conversation_id / "conversation.json"
    data = json.loads(path.read_text())
    data.pop("created_at")
    data["turns"] = []
    path.write_text(json.dumps(data))
    stamp = time.time() - days * 86400
    os.utime(path, (stamp, stamp))


def test_dry_run_reports_without_deleting(data_dir, capsys):
    conversations.save(make_transcript("conv_old", "hi"))
    age(data_dir, "conv_old", 40)

    assert cleanup.main(["--dry-run"]) == 0

    assert json.loads(capsys.readouterr().out) == {"expired_shares": 0, "removed": 1, "kept": 0}
    assert (data_dir / "conversations" / "conv_old").is_dir()


def test_max_age_override(data_dir, capsys):
    conversations.save(make_transcript("conv_a", "hi"))
    conversations.save(make_transcript("conv_b", "hi"))
    age(data_dir, "conv_a", 10)

    cleanup.main(["--max-age-days", "5"])

    assert json.loads(capsys.readouterr().out)["removed"] == 1
    assert conversations.load("conv_a") is None
    assert conversations.load("conv_b") is not None
