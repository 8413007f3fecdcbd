from __future__ import annotations

from datetime import datetime
from pathlib import Path

from jobctl.scheduler.pipeline import build_log_path
from jobctl.utils import expand_env, split_command, trunc_string, valid_filename


def test_expand_env_plain_and_braced() -> None:
    env = {"HOME": "/home/u", "NAME": "job"}
    assert expand_env("$HOME/${NAME}.log", env) == "/home/u/job.log"


def test_expand_env_unknown_is_empty() -> None:
    assert expand_env("a${MISSING}b$ALSO_MISSING", {}) == "ab"


def test_split_command() -> None:
    assert split_command('sh -c "echo hi"') == ("sh", ["-c", "echo hi"])
    assert split_command("") == ("", [])


def test_valid_filename() -> None:
    assert valid_filename('a/b:c*d?"e<f>g|h\\i') == "a_b_c_d__e_f_g_h_i"


def test_trunc_string() -> None:
    assert trunc_string("0123456789", 8) == "01234567"
    assert trunc_string("abc", 8) == "abc"


def test_log_path_format() -> None:
    started = datetime(2022, 1, 2, 3, 4, 5, 678901)
    path = build_log_path(Path("/var/log/jobctl"), "my/step", started, "abcdefgh-1234-5678")
    assert path == Path("/var/log/jobctl/my_step.20220102.03:04:05.678.abcdefgh.log")


def test_log_path_short_request_id() -> None:
    started = datetime(2022, 12, 31, 23, 59, 59, 1000)
    path = build_log_path("/logs", "s", started, "ab")
    assert path.name == "s.20221231.23:59:59.001.ab.log"
