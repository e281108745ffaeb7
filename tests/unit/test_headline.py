"""Tests for plugin-level validators: composer, config, host config, manifest, routes."""

from __future__ import annotations

import copy
import json

import pytest

from fortiscan.exceptions import (
    DuplicateRouteIdError,
    DuplicateSettingIdError,
    HostConfigError,
    PermissionManifestError,
    RouteFileError,
    ScanConfigurationError,
)
from fortiscan.headline import (
    ComposerScan,
    HostConfigValidator,
    PermissionManifestValidator,
    PluginConfigValidator,
    RouteFileValidator,
    RouteIdRegistry,
)
from fortiscan.headline.host_config import is_setting_value
from fortiscan.headline.manifest import CodecRule, NetworkRule
from fortiscan.headline.plugin_config import load_schema
from fortiscan.scanner.models import Severity


@pytest.fixture
def manifest(fixtures_dir) -> dict:
    return json.loads((fixtures_dir / "permissions.json").read_text())


class TestComposerScan:
    def test_missing_file(self, policy, tmp_path):
        [v] = ComposerScan(policy).scan(tmp_path / "composer.json")
        assert v.type == "composer_file_missing"
        assert v.severity == Severity.MEDIUM
        assert v.issue == "composer.json not found"

    def test_invalid_json(self, policy, make_plugin):
        root = make_plugin({"composer.json": "{not json"})
        [v] = ComposerScan(policy).scan(root / "composer.json")
        assert v.type == "composer_file_invalid"
        assert v.severity == Severity.HIGH

    def test_forbidden_packages(self, test_policy, make_plugin):
        root = make_plugin(
            {
                "composer.json": json.dumps(
                    {
                        "require": {"php": ">=8.1", "Evil/Backdoor": "^1.0"},
                        "require-dev": {"evil/backdoor": "dev-main", "phpunit/phpunit": "^10"},
                    }
                )
            }
        )
        found = ComposerScan(test_policy).scan(root / "composer.json")
        assert [(v.data["section"], v.data["version"]) for v in found] == [
            ("require", "^1.0"),
            ("require-dev", "dev-main"),
        ]
        assert all(v.severity == Severity.CRITICAL and v.line == 0 for v in found)

    def test_clean_manifest(self, test_policy, make_plugin):
        root = make_plugin({"composer.json": json.dumps({"require": {"php": ">=8.1"}})})
        assert ComposerScan(test_policy).scan(root / "composer.json") == []


class TestPluginConfig:
    @pytest.fixture
    def validator(self, fixtures_dir) -> PluginConfigValidator:
        return PluginConfigValidator.from_file(fixtures_dir / "plugin_config_schema.json")

    def test_valid(self, validator, make_plugin):
        root = make_plugin({"plugin.config.json": json.dumps({"name": "invoices", "version": "1.2.0"})})
        assert validator.validate(root) == {}

    def test_missing(self, validator, tmp_path):
        assert validator.validate(tmp_path) == {"error": "plugin.config.json not found"}

    def test_invalid_json(self, validator, make_plugin):
        root = make_plugin({"plugin.config.json": "{"})
        assert validator.validate(root)["error"].startswith("Invalid JSON in plugin.config.json")

    def test_schema_errors(self, validator, make_plugin):
        root = make_plugin(
            {"plugin.config.json": json.dumps({"version": "one", "extra": True})}
        )
        result = validator.validate(root)
        assert result["error"] == "Schema validation failed"
        by_keyword = {d["keyword"]: d for d in result["details"]}
        assert set(by_keyword) == {"required", "pattern", "additionalProperties"}
        assert by_keyword["pattern"]["path"] == "/version"
        assert by_keyword["required"]["path"] == "/"

    def test_bad_schema(self, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({"type": "nonsense"}))
        with pytest.raises(ScanConfigurationError):
            load_schema(path)

    def test_missing_schema(self, tmp_path):
        with pytest.raises(ScanConfigurationError):
            load_schema(tmp_path / "absent.json")


class TestHostConfig:
    def test_valid(self):
        HostConfigValidator().validate(
            {
                "global": {"theme": "dark", "flags": {"beta": True, "legacy": None}},
                "settings": [
                    {"id": "smtp", "port": 587, "hosts": ["a", "b"]},
                    {"id": 2, "enabled": False, "ratio": 0.5},
                ],
            }
        )

    @pytest.mark.parametrize(
        "config, message",
        [
            ([], "Host config must be an object."),
            ({"global": []}, "'global' must be an object."),
            ({"global": {"id": 1}}, "'global' must not contain an 'id'."),
            ({"global": {"bad": {"x": 1}}}, "Invalid SettingValue at global['bad']."),
            ({"settings": {}}, "'settings' must be an array of Setting objects."),
            ({"settings": ["x"]}, "'settings[0]' must be an object."),
            ({"settings": [{"name": "x"}]}, "'settings[0].id' is required."),
            ({"settings": [{"id": True}]}, "'settings[0].id' must be a string or number."),
            ({"settings": [{"id": "a", "v": [1]}]}, "Invalid SettingValue at settings[0]['v']."),
        ],
    )
    def test_errors(self, config, message):
        with pytest.raises(HostConfigError) as exc:
            HostConfigValidator().validate(config)
        assert exc.value.message == message

    def test_duplicate_ids_across_types(self):
        with pytest.raises(DuplicateSettingIdError) as exc:
            HostConfigValidator().validate({"settings": [{"id": "1"}, {"id": 1}]})
        assert exc.value.setting_id == "1"

    def test_setting_values(self):
        assert is_setting_value(None)
        assert is_setting_value(["a", "b"])
        assert not is_setting_value(["a", "a"])
        assert not is_setting_value({"k": "v"})

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(HostConfigError):
            HostConfigValidator().validate_file(tmp_path / "host.json")


class TestPermissionManifest:
    def test_valid_fixture(self, manifest):
        parsed = PermissionManifestValidator().validate(manifest)
        assert parsed.title == "Invoices plugin"
        kinds = [type(rule) for _, _, rule in parsed.rules()]
        assert NetworkRule in kinds and CodecRule in kinds
        network = parsed.required_permissions[1]
        assert network.target.methods == ["GET", "POST"]
        assert network.target.auth_via_host_secret is True

    def test_unknown_type(self, manifest):
        manifest["required_permissions"][0]["type"] = "shell"
        with pytest.raises(PermissionManifestError) as exc:
            PermissionManifestValidator().validate(manifest)
        assert exc.value.errors[0].startswith("$.required_permissions[0]")

    def test_unknown_key(self, manifest):
        manifest["required_permissions"][2]["target"]["mode"] = "0777"
        with pytest.raises(PermissionManifestError) as exc:
            PermissionManifestValidator().validate(manifest)
        assert any(e.startswith("$.required_permissions[2].target.mode") for e in exc.value.errors)

    def test_errors_are_collected(self, manifest):
        manifest["required_permissions"][0]["actions"] = ["drop"]
        manifest["required_permissions"][1]["target"]["hosts"] = ["EVIL.COM"]
        with pytest.raises(PermissionManifestError) as exc:
            PermissionManifestValidator().validate(manifest)
        assert len(exc.value.errors) == 2
        assert "Permission manifest validation failed" in exc.value.message

    def test_db_target_needs_model_or_table(self, manifest):
        manifest["required_permissions"][0]["target"] = {"model": "A", "table": "b"}
        with pytest.raises(PermissionManifestError) as exc:
            PermissionManifestValidator().validate(manifest)
        assert "exactly one of 'model' or 'table'" in exc.value.errors[0]

    def test_file_traversal(self, manifest):
        manifest["required_permissions"][2]["target"]["paths"] = ["../../etc/passwd"]
        with pytest.raises(PermissionManifestError):
            PermissionManifestValidator().validate(manifest)

    def test_port_range(self, manifest):
        manifest["required_permissions"][1]["target"]["ports"] = [70000]
        with pytest.raises(PermissionManifestError):
            PermissionManifestValidator().validate(manifest)

    def test_codec_unserialize_needs_class_list(self, manifest):
        del manifest["optional_permissions"][1]["options"]
        with pytest.raises(PermissionManifestError) as exc:
            PermissionManifestValidator().validate(manifest)
        assert "allow_unserialize_classes" in exc.value.errors[0]

    def test_codec_groups_only(self, manifest):
        codec = manifest["optional_permissions"][1]
        del codec["methods"], codec["options"]
        codec["groups"] = ["json"]
        PermissionManifestValidator().validate(manifest)

    def test_host_channels_and_modules(self, manifest):
        data = copy.deepcopy(manifest)
        data["optional_permissions"].append(
            {"type": "module", "target": {"plugin": "crm", "apis": ["contacts"]}, "actions": ["call"]}
        )
        validator = PermissionManifestValidator(allowed_channels=["SMS"], known_modules=["billing"])
        with pytest.raises(PermissionManifestError) as exc:
            validator.validate(data)
        assert exc.value.errors == [
            "$.optional_permissions[0].target.channels[0]: channel 'mail' is not allowed by host",
            "$.optional_permissions[2].target.plugin: unknown module 'crm' (not in host modules map)",
        ]

    def test_not_an_object(self):
        with pytest.raises(PermissionManifestError):
            PermissionManifestValidator().validate(["x"])

    def test_validate_file(self, fixtures_dir):
        parsed = PermissionManifestValidator().validate_file(fixtures_dir / "permissions.json")
        assert len(parsed.optional_permissions) == 2


class TestRoutes:
    def test_valid_file_registers_nested_ids(self, fixtures_dir):
        registry = RouteIdRegistry()
        RouteFileValidator(registry).validate_file(fixtures_dir / "routes_web.json")
        assert len(registry) == 4
        assert "admin.settings" in registry

    def test_missing_routes_array(self):
        with pytest.raises(RouteFileError, match="missing 'routes' array"):
            RouteFileValidator().validate({"pages": []}, "web.json")

    def test_missing_desc(self):
        data = {"routes": [{"id": "a", "desc": "A", "type": "group", "routes": [{"id": "b"}]}]}
        with pytest.raises(RouteFileError) as exc:
            RouteFileValidator().validate(data, "web.json")
        assert exc.value.message == "Route at web.json /routes[0]/routes[0] missing required 'id'/'desc'."

    def test_empty_id(self):
        with pytest.raises(RouteFileError):
            RouteFileValidator().validate({"routes": [{"id": "", "desc": "x"}]}, "web.json")

    def test_duplicate_in_same_file(self):
        data = {"routes": [{"id": "a", "desc": "x"}, {"id": "a", "desc": "y"}]}
        with pytest.raises(RouteFileError, match="within the same file") as exc:
            RouteFileValidator().validate(data, "web.json")
        assert not isinstance(exc.value, DuplicateRouteIdError)

    def test_duplicate_across_files(self):
        validator = RouteFileValidator(RouteIdRegistry())
        validator.validate({"routes": [{"id": "home", "desc": "x"}]}, "web.json")
        with pytest.raises(DuplicateRouteIdError) as exc:
            validator.validate({"routes": [{"id": "home", "desc": "y"}]}, "api.json")
        assert exc.value.extra == {
            "id": "home",
            "first": "web.json /routes[0]",
            "second": "api.json /routes[0]",
        }

    def test_unreadable_and_invalid(self, tmp_path):
        with pytest.raises(RouteFileError, match="Cannot read route file"):
            RouteFileValidator().validate_file(tmp_path / "none.json")
        bad = tmp_path / "bad.json"
        bad.write_text("[")
        with pytest.raises(RouteFileError, match="Invalid JSON in route file"):
            RouteFileValidator().validate_file(bad)
