import json

import pytest

from openarm_retarget.app import SyntheticOperator, main, run_session


def test_run_session_logs_every_tick(tmp_path) -> None:
    log_path = tmp_path / "session.json"
    log = run_session(duration=0.2, dt=0.02, mode="hybrid", calibrate_at=0.1, log_path=log_path)
    assert len(log) == 10
    saved = json.loads(log_path.read_text())
    assert len(saved) == 10
    assert len(saved[-1]["left_angles"]) == 7
    assert "right_residual" in saved[-1]
    assert saved[-1]["mode"] == "hybrid"


def test_run_session_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        run_session(duration=1.0, dt=0.0, mode="single", calibrate_at=None, log_path=None)
    with pytest.raises(ValueError):
        run_session(duration=1.0, dt=0.02, mode="dance", calibrate_at=None, log_path=None)


def test_single_mode_angles_stay_in_limits() -> None:
    log = run_session(duration=0.5, dt=0.02, mode="single", calibrate_at=None, log_path=None)
    for entry in log:
        assert -180.0 <= entry["left_angles"][3] <= 0.0
        assert -90.0 <= entry["right_angles"][1] <= 90.0


def test_operator_wrist_moves_with_time() -> None:
    operator = SyntheticOperator()
    wrist = operator.wrist_source("left")
    first = wrist().copy()
    operator.advance(1.0)
    assert not (wrist() == first).all()


def test_main_writes_log(tmp_path) -> None:
    log_path = tmp_path / "trace.json"
    main(["--duration", "0.1", "--mode", "ik", "--log", str(log_path), "--log-level", "WARNING"])
    assert len(json.loads(log_path.read_text())) == 5
