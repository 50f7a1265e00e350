"""
Tests for the process entry point.
"""

from fs_gateway import __main__ as entry_point

class TestMain:
    """Test startup argument and configuration handling."""

    def test_configuration_error_exits_with_status_1(self, tmp_path, capsys):
        assert entry_point.main([str(tmp_path / "absent.yml")]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_runs_server_with_loaded_config(self, tmp_path, monkeypatch):
        path = tmp_path / "gateway.yml"
        path.write_text("switch:\n  host: pbx.example.com\napi:\n  port: 8081\n")
        calls = []
        monkeypatch.setattr(entry_point, "run", calls.append)
        monkeypatch.delenv("API_PORT", raising=False)
        monkeypatch.delenv("FREESWITCH_HOST", raising=False)

        assert entry_point.main([str(path)]) == 0

        assert len(calls) == 1
        assert calls[0].switch.host == "pbx.example.com"
        assert calls[0].api.port == 8081
