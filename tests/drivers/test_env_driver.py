"""Tests for the .env / process environment driver."""

import pytest

from kfg import Kfg, c, env_driver
from kfg.drivers.env import env_key
from kfg.errors import KfgValidationError

ENV_KEYS = (
    "SVC_PORT",
    "SVC_HOST",
    "SVC_HOME",
    "SVC_TOKEN",
    "SVC_TAGS",
    "SVC_LIMITS",
    "CUSTOM_PORT",
)


@pytest.fixture(autouse=True)
def clean_environ(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def env_file(tmp_path):
    return tmp_path / ".env"


@pytest.fixture
def schema():
    return {
        "svc": {
            "port": c.number(default=3000),
            "host": c.string(default="localhost"),
            "tags": c.array(c.string(), default=[]),
        }
    }


def _mount(env_file, schema) -> Kfg:
    engine = Kfg(env_driver(str(env_file)), schema)
    engine.mount()
    return engine


def test_env_key():
    assert env_key("app.port") == "APP_PORT"
    assert env_key("app.port", c.number(prop="PORT")) == "PORT"


class TestLoading:
    def test_file_beats_process_env_beats_default(self, env_file, schema, monkeypatch):
        env_file.write_text("SVC_PORT=9090\n")
        monkeypatch.setenv("SVC_PORT", "8080")
        monkeypatch.setenv("SVC_HOST", "from-env")

        engine = _mount(env_file, schema)

        assert engine.get("svc.port") == 9090
        assert engine.get("svc.host") == "from-env"
        assert engine.get("svc.tags") == []

    def test_missing_file_uses_defaults(self, env_file, schema):
        engine = _mount(env_file, schema)
        assert engine.get("svc") == {"port": 3000, "host": "localhost", "tags": []}

    def test_prop_overrides_key(self, env_file):
        env_file.write_text("CUSTOM_PORT=7000\n")
        engine = _mount(env_file, {"svc": {"port": c.number(prop="CUSTOM_PORT")}})
        assert engine.get("svc.port") == 7000

    def test_json_values_are_decoded(self, env_file):
        env_file.write_text('SVC_TAGS=["a","b"]\nSVC_LIMITS={"cpu": 2}\n')
        engine = _mount(
            env_file,
            {"svc": {"tags": c.array(c.string()), "limits": c.record(c.number())}},
        )

        assert engine.get("svc.tags") == ["a", "b"]
        assert engine.get("svc.limits") == {"cpu": 2}

    def test_quoted_values_and_comments(self, env_file, schema):
        env_file.write_text('# service\nSVC_HOST="my host"  # inline\nSVC_PORT=81 # port\n')
        engine = _mount(env_file, schema)

        assert engine.get("svc.host") == "my host"
        assert engine.get("svc.port") == 81

    def test_reload_is_idempotent(self, env_file, schema, monkeypatch):
        content = '# service\nSVC_HOST="my host"\nSVC_TAGS=["a"]\n'
        env_file.write_text(content)
        monkeypatch.setenv("SVC_PORT", "8080")
        engine = _mount(env_file, schema)
        tree = engine.to_json()

        engine.reload()
        engine.reload()

        assert engine.to_json() == tree
        assert tree == {"svc": {"port": 8080, "host": "my host", "tags": ["a"]}}
        assert env_file.read_text() == content

    def test_windows_path_survives_write_and_reload(self, env_file):
        engine = _mount(env_file, {"svc": {"home": c.string(default="")}})

        engine.set("svc.home", "C:\\new dir")
        engine.reload()

        assert engine.get("svc.home") == "C:\\new dir"


class TestWriting:
    def test_set_writes_key_with_description(self, env_file, schema):
        env_file.write_text("SVC_PORT=9090\n")
        engine = _mount(env_file, schema)

        engine.set("svc.port", 7000, "Service port")

        assert env_file.read_text() == "# Service port\nSVC_PORT=7000\n"
        assert _mount(env_file, schema).get("svc.port") == 7000

    def test_set_namespace_writes_each_leaf(self, env_file, schema):
        engine = _mount(env_file, schema)

        engine.set("svc", {"port": 1, "host": "h"})

        content = env_file.read_text()
        assert "SVC_PORT=1" in content
        assert "SVC_HOST=h" in content

    def test_set_array_writes_json(self, env_file, schema):
        engine = _mount(env_file, schema)

        engine.set("svc.tags", ["x", "y"])

        assert 'SVC_TAGS=["x", "y"]' in env_file.read_text()
        assert _mount(env_file, schema).get("svc.tags") == ["x", "y"]

    def test_delete_removes_key_and_comment(self, env_file, schema):
        env_file.write_text("OTHER=1\n# Service port\nSVC_PORT=9090\n")
        engine = _mount(env_file, schema)

        engine.delete("svc.port")

        assert env_file.read_text() == "OTHER=1\n"
        assert engine.get("svc.port") == 3000

    def test_save_writes_every_leaf(self, env_file, schema):
        engine = _mount(env_file, schema)

        engine.save()

        assert _mount(env_file, schema).to_json() == engine.to_json()
        assert "SVC_HOST=localhost" in env_file.read_text()

    def test_invalid_set_leaves_file_alone(self, env_file, schema):
        env_file.write_text("SVC_PORT=9090\n")
        engine = _mount(env_file, schema)

        with pytest.raises(KfgValidationError):
            engine.set("svc.port", "many")

        assert env_file.read_text() == "SVC_PORT=9090\n"


class TestErrors:
    def test_error_lists_additions_and_fixes(self, env_file):
        env_file.write_text("SVC_PORT=abc\n")
        schema = {"svc": {"token": c.string(), "port": c.number(default=3000)}}

        with pytest.raises(KfgValidationError) as exc:
            _mount(env_file, schema)

        message = str(exc.value)
        assert "[Kfg] Invalid environment configuration." in message
        assert f"in {env_file} add:" in message
        assert "+ SVC_TOKEN=<string>" in message
        assert '- SVC_PORT="abc"' in message
        assert "+ SVC_PORT=3000" in message
        assert sorted(exc.value.paths) == ["svc.port", "svc.token"]
