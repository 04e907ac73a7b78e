import json

import pytest

from tools.replay import ReplayFrame, load_frames, main, replay, summarize


def _frames():
    bars = "bars,cooldowns"
    return [
        ReplayFrame("1", bars, {"energy": {"current": 100, "maximum": 100}}, 1000),
        ReplayFrame("1", bars, {"energy": {"current": 100, "maximum": 100}}, 1060),
        ReplayFrame("1", bars, {"energy": {"current": 20, "maximum": 100}}, 1120),
        # refilled inside the cooldown window
        ReplayFrame("1", bars, {"energy": {"current": 100, "maximum": 100}}, 1300),
        ReplayFrame("1", bars, {"energy": {"current": 20, "maximum": 100}}, 1500),
        ReplayFrame("1", bars, {"energy": {"current": 100, "maximum": 100}}, 1700),
        ReplayFrame("2", "travel", {"travel": {"destination": "Japan", "time_left": 60}}, 1000),
        ReplayFrame("2", "travel", {"travel": {"destination": "Japan", "time_left": 0}}, 1060),
    ]


@pytest.mark.asyncio
async def test_replay_uses_frame_time_for_cooldowns():
    metrics, notifier = await replay(_frames())
    assert metrics.frames == 8
    assert metrics.subjects == 2
    assert metrics.by_title == {"Energy Full!": 2, "Travel Completed!": 1}
    assert metrics.alerts == 3
    assert [s for s, _ in notifier.sent] == ["1", "2", "1"]


@pytest.mark.asyncio
async def test_replay_rate_limit_override():
    frames = [ReplayFrame("1", "bars,cooldowns",
                          {b: {"current": 5, "maximum": 5} for b in ("energy", "nerve", "happy", "life")}, 0)]
    metrics, _ = await replay(frames, max_alerts=1)
    assert metrics.alerts == 1
    assert summarize(metrics)["alerts"] == 1


def test_load_frames_and_cli(tmp_path, capsys):
    path = tmp_path / "frames.jsonl"
    lines = [json.dumps({"subject": f.subject_id, "group": f.data_group, "payload": f.payload, "ts": f.ts})
             for f in _frames()]
    path.write_text("\n".join(lines) + "\n\n")
    assert len(load_frames(str(path))) == 8

    assert main([str(path)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["alerts"] == 3
