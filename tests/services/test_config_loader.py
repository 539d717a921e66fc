import pytest

from n8ninstaller.errors import InstallerError
from n8ninstaller.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".n8n-installer.yml"
    config_file.write_text(
        "domain: n8n.example.org\ntunnel_name: pi-tunnel\nretention_days: 14\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["domain"] == "n8n.example.org"
    assert loaded["tunnel_name"] == "pi-tunnel"
    assert loaded["retention_days"] == 14


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".n8n-installer.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(InstallerError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping(tmp_path):
    config_file = tmp_path / ".n8n-installer.yml"
    config_file.write_text("- domain\n", encoding="utf-8")

    with pytest.raises(InstallerError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))
