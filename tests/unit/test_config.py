"""Tests for YAML configuration loading."""

import textwrap
from pathlib import Path

import pytest

from converge.config import Config, ConfigValidationError
from converge.core.models import ResourceKind
from converge.utils.errors import ErrorCategory

VALID = textwrap.dedent("""
    project: cafe
    region: us-west-2
    settings:
      wait:
        interval: 5
        max_attempts: 12
      wait_overrides:
        nat_gateway:
          interval: 15
          max_attempts: 40
      retry:
        max_retries: 2
    resources:
      - name: nat-a
        kind: nat_gateway
        identity: subnet-public-a
        attributes:
          SubnetId: subnet-public-a
      - name: route-a
        kind: route
        identity: subnet-private-a
        attributes:
          NatGatewayId: ${nat-a}
      - name: web-sg
        kind: security_group
        identity: vpc-1/web
        attributes:
          Description: web servers
""")


def write(tmp_path, text):
    path = tmp_path / "converge.yaml"
    path.write_text(text)
    return str(path)


class TestLoad:
    def test_valid_config(self, tmp_path):
        config = Config(write(tmp_path, VALID)).load()

        assert config.project.project == "cafe"
        assert [spec.logical_name for spec in config.specs] == ["nat-a", "route-a", "web-sg"]
        assert config.specs[0].kind == ResourceKind.NAT_GATEWAY
        assert config.specs[1].desired_attributes == {"NatGatewayId": "${nat-a}"}

    def test_settings(self, tmp_path):
        settings = Config(write(tmp_path, VALID)).load().settings

        assert settings.wait.to_wait_config().interval == 5
        assert settings.wait_configs()[ResourceKind.NAT_GATEWAY].max_attempts == 40
        assert settings.retry.to_policy().max_retries == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "nope.yaml")).load()

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="Failed to parse YAML") as exc_info:
            Config(write(tmp_path, "project: [unclosed")).load()
        assert exc_info.value.category == ErrorCategory.CONFIGURATION


class TestValidate:
    def test_missing_sections(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            Config("unused").load_dict({})
        locations = [error["loc"] for error in exc_info.value.errors]
        assert ["project"] in locations
        assert ["resources"] in locations

    def test_errors_are_collected_per_entry(self):
        data = {
            "project": "cafe",
            "resources": [
                {"name": "ok", "kind": "route", "identity": "rtb-1"},
                {"name": "bad kind", "kind": "vpc", "identity": "vpc-1"},
                {"kind": "route", "identity": "rtb-2"},
            ],
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            Config("unused").load_dict(data)

        locations = [tuple(error["loc"][:2]) for error in exc_info.value.errors]
        assert ("resources", 1) in locations
        assert ("resources", 2) in locations
        assert ("resources", 0) not in locations
        assert "resources -> 1" in str(exc_info.value)

    def test_duplicate_names_and_keys(self):
        data = {
            "project": "cafe",
            "resources": [
                {"name": "a", "kind": "route", "identity": "rtb-1"},
                {"name": "a", "kind": "route", "identity": "rtb-2"},
                {"name": "b", "kind": "route", "identity": "rtb-1"},
            ],
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            Config("unused").load_dict(data)

        messages = [error["msg"] for error in exc_info.value.errors]
        assert "Duplicate name 'a'" in messages
        assert "route/rtb-1 is already declared by 'a'" in messages

    def test_unknown_reference(self):
        data = {
            "project": "cafe",
            "resources": [
                {"name": "route", "kind": "route", "identity": "rtb-1", "attributes": {"NatGatewayId": "${nat}"}},
            ],
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            Config("unused").load_dict(data)
        assert "'nat' which does not exist" in exc_info.value.errors[0]["msg"]

    def test_bad_retry_settings(self):
        data = {
            "project": "cafe",
            "settings": {"retry": {"base_delay": 10, "max_delay": 1}},
            "resources": [{"name": "a", "kind": "route", "identity": "rtb-1"}],
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            Config("unused").load_dict(data)
        assert exc_info.value.errors[0]["loc"][:2] == ["settings", "retry"]


class TestGetSpecs:
    def test_all(self, tmp_path):
        assert len(Config(write(tmp_path, VALID)).load().get_specs()) == 3

    def test_selection_pulls_in_dependencies(self, tmp_path):
        specs = Config(write(tmp_path, VALID)).load().get_specs(["route-a"])
        assert [spec.logical_name for spec in specs] == ["nat-a", "route-a"]

    def test_unknown_name(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="Unknown resource"):
            Config(write(tmp_path, VALID)).load().get_specs(["missing"])


def test_bundled_example_is_valid():
    example = Path(__file__).resolve().parents[2] / "examples" / "cafe-multi-az.yaml"
    config = Config(str(example)).load()

    assert config.project.project == "cafe"
    assert len(config.specs) == 10
    assert config.settings.wait_configs()[ResourceKind.LOAD_BALANCER].interval == 15
