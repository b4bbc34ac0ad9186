"""Tests for settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from logistics.config import Settings


class TestSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("TEST_LEVEL", "STEP_GROUP_CODE", "KAKAOWORK_CHATROOMS", "OUTPUT_DIR", "STEP_TIMEOUT_SECONDS"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.test_level == 1
        assert settings.step_group_code == "PG_PROC"
        assert settings.step_timeout_seconds is None
        assert settings.column_mapping_path.name == "column_mapping.yaml"
        assert settings.column_mapping_path.is_file()

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TEST_LEVEL", "22")
        monkeypatch.setenv("STEP_GROUP_CODE", "PG_TEST")
        monkeypatch.setenv("OUTPUT_DIR", str(tmp_path))
        monkeypatch.setenv("STEP_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("KAKAOWORK_CHATROOMS", '{"SeoulFrozen": "1001", "SalesData": "1002"}')

        settings = Settings(_env_file=None)

        assert settings.test_level == 22
        assert settings.step_group_code == "PG_TEST"
        assert settings.output_dir == Path(tmp_path)
        assert settings.step_timeout_seconds == 120.0
        assert settings.kakaowork_chatrooms["SalesData"] == "1002"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TEST_LEVEL=5\nDROPBOX_FOLDER=/송장/테스트\nUNRELATED=1\n", encoding="utf-8")

        settings = Settings(_env_file=env_file)

        assert settings.test_level == 5
        assert settings.dropbox_folder == "/송장/테스트"

    @pytest.mark.parametrize("value", ["0", "-3"])
    def test_test_level_must_be_positive(self, monkeypatch, value):
        monkeypatch.setenv("TEST_LEVEL", value)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
