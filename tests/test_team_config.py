import json
import os

import pytest

from mtcomm.team_config import (
    app_name,
    listen_endpoint,
    parse_int_arg,
    read_int_env,
    render_config,
    team_string,
    temp_config,
    world_rank_size_from_env,
)


def test_read_int_env_value():
    assert read_int_env("X", environ={"X": "12"}) == 12


def test_read_int_env_missing_uses_default():
    assert read_int_env("X", 5, environ={}) == 5
    assert read_int_env("X", environ={}) == -1


@pytest.mark.parametrize("text", ["12abc", "", "abc", "-1", "1000001", "3 "])
def test_read_int_env_invalid_uses_default(text):
    assert read_int_env("X", 9, environ={"X": text}) == 9


def test_read_int_env_accepts_leading_space_and_bounds():
    assert read_int_env("X", environ={"X": " 7"}) == 7
    assert read_int_env("X", environ={"X": "1000000"}) == 1000000
    assert read_int_env("X", environ={"X": "0"}) == 0


def test_world_rank_size_openmpi():
    env = {"OMPI_COMM_WORLD_RANK": "2", "OMPI_COMM_WORLD_SIZE": "4"}
    assert world_rank_size_from_env(env) == (2, 4)


def test_world_rank_size_falls_back_per_variable():
    env = {"OMPI_COMM_WORLD_RANK": "1", "PMI_SIZE": "3", "SLURM_NTASKS": "8"}
    assert world_rank_size_from_env(env) == (1, 3)


def test_world_rank_size_slurm():
    env = {"SLURM_PROCID": "0", "SLURM_NTASKS": "2"}
    assert world_rank_size_from_env(env) == (0, 2)


def test_world_rank_size_missing_raises():
    with pytest.raises(LookupError):
        world_rank_size_from_env({})
    with pytest.raises(LookupError):
        world_rank_size_from_env({"PMI_RANK": "0", "PMI_SIZE": "0"})


@pytest.mark.parametrize("text", [None, "0", "-4", "abc", "10x", "1000000001"])
def test_parse_int_arg_invalid(text):
    assert parse_int_arg(text, 1000) == 1000


def test_parse_int_arg_valid():
    assert parse_int_arg("500", 1000) == 500


def test_app_names():
    assert app_name(0) == "Master"
    assert app_name(3) == "Worker3"
    with pytest.raises(ValueError):
        app_name(-1)


def test_team_string():
    assert team_string(3) == "Master:Worker1:Worker2"
    assert team_string(1) == "Master"
    with pytest.raises(ValueError):
        team_string(0)


def test_listen_endpoints():
    assert listen_endpoint("tcp") == "TCP:localhost:42000"
    assert listen_endpoint("UCX") == "UCX:localhost:42000"
    assert listen_endpoint("MQTT") == "MQTT:listen_label"
    assert listen_endpoint("MPI") is None
    with pytest.raises(ValueError):
        listen_endpoint("SHM")


def test_render_config_mpi_structure():
    config = json.loads(render_config(3, "mpi"))
    components = config["components"]
    assert [c["name"] for c in components] == ["Master", "Worker1", "Worker2"]
    assert [c["host"] for c in components] == ["0", "1", "2"]
    assert components[0]["listen-endpoints"] == ["MPI:0"]
    assert all(c["protocols"] == ["MPI"] for c in components)
    assert "listen-endpoints" not in components[1]


def test_render_config_mqtt_endpoint():
    config = json.loads(render_config(2, "MQTT"))
    assert config["components"][0]["listen-endpoints"] == ["MQTT:listen_label"]


def test_render_config_rejects_tcp():
    with pytest.raises(ValueError):
        render_config(2, "TCP")


def test_temp_config_written_and_removed(tmp_path):
    with temp_config(2, 1, "UCX", str(tmp_path)) as path:
        assert os.path.basename(path) == f"tmp_masterworker_r1_{os.getpid()}.json"
        with open(path, encoding="utf-8") as src:
            assert src.read() == render_config(2, "UCX")
    assert not os.path.exists(path)