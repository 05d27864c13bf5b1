import pytest

from mobile.config import DEFAULT_SERVER_URL, SimulatorConfig, SlotConfig, load_config
from mobile.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("AEROSIM_CONFIG", raising=False)
    monkeypatch.delenv("AEROSIM_SERVER", raising=False)


def test_defaults_match_the_two_stock_mobiles():
    config = load_config()

    assert config.server_url == DEFAULT_SERVER_URL
    assert config.slots == [
        SlotConfig("Mobile 1", "sim-user-001", "sim-plane-001", "Foxtrot-4"),
        SlotConfig("Mobile 2", "sim-user-002", "sim-plane-002", "Delta-7"),
    ]
    assert config.log_capacity == 20
    assert config.join_timeout is None
    assert config.open_timeout is None


def test_yaml_file_overrides_defaults(tmp_path):
    path = tmp_path / "sim.yaml"
    path.write_text(
        "server_url: http://127.0.0.1:9000\n"
        "log_capacity: 5\n"
        "join_timeout: 2.5\n"
        "slots:\n"
        "  - {userId: u1, planeId: p1, playerName: Alpha}\n"
        "  - {userId: u2, planeId: p2, label: Right}\n"
        "  - {userId: u3, planeId: p3}\n"
    )

    config = load_config(path)

    assert config.server_url == "http://127.0.0.1:9000"
    assert config.log_capacity == 5
    assert config.join_timeout == 2.5
    assert config.slots == [
        SlotConfig("Mobile 1", "u1", "p1", "Alpha"),
        SlotConfig("Right", "u2", "p2", "Pilot-2"),
        SlotConfig("Mobile 3", "u3", "p3", "Pilot-3"),
    ]


def test_env_points_at_file_and_overrides_server(tmp_path, monkeypatch):
    path = tmp_path / "sim.yaml"
    path.write_text("server_url: http://from-file:1\n")
    monkeypatch.setenv("AEROSIM_CONFIG", str(path))
    monkeypatch.setenv("AEROSIM_SERVER", "http://from-env:2")

    assert load_config().server_url == "http://from-env:2"
    assert load_config(server_url="https://explicit:3").server_url == "https://explicit:3"


@pytest.mark.parametrize(
    "text",
    [
        "- just\n- a list\n",
        "server_url: [unclosed\n",
        "slots: []\n",
        "slots:\n  - {userId: u1}\n",
        "slots:\n  - {userId: u1, planeId: p1}\n  - {userId: u1, planeId: p2}\n",
        "slots:\n  - {userId: u1, planeId: p1}\n  - {userId: u2, planeId: p1}\n",
        "log_capacity: 0\n",
        "open_timeout: -1\n",
        "server_url: ws://wrong-scheme\n",
    ],
)
def test_invalid_files_raise_config_error(tmp_path, text):
    path = tmp_path / "bad.yaml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_file_raises_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_to_dict_is_plain_data():
    data = SimulatorConfig().to_dict()
    assert data["slots"][0]["entity_id"] == "sim-plane-001"
