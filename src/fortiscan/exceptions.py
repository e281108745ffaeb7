"""Exception hierarchy shared by the scanner, policy layer and validators."""

from __future__ import annotations


class FortiScanError(Exception):
    """Base class for all FortiScan errors."""


class ScanConfigurationError(FortiScanError, ValueError):
    """Unrecoverable configuration problem; the run does not proceed."""


class HeadlineValidationError(FortiScanError):
    """A plugin-level input (manifest, host config, route file) is invalid."""

    code = "headline_invalid"

    def __init__(self, message: str, extra: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class HostConfigError(HeadlineValidationError):
    code = "host_config_invalid"


class DuplicateSettingIdError(HostConfigError):
    code = "duplicate_setting_id"

    def __init__(self, setting_id: str) -> None:
        super().__init__(
            f"Duplicate setting id '{setting_id}'.", {"id": setting_id}
        )
        self.setting_id = setting_id


class PermissionManifestError(HeadlineValidationError):
    code = "manifest_invalid"

    def __init__(self, errors: list[str]) -> None:
        message = "Permission manifest validation failed:\n" + "\n".join(
            f"- {e}" for e in errors
        )
        super().__init__(message, {"errors": list(errors)})
        self.errors = list(errors)


class RouteFileError(HeadlineValidationError):
    code = "route_invalid"


class DuplicateRouteIdError(RouteFileError):
    code = "duplicate_route_id"

    def __init__(self, route_id: str, first_file: str, second_file: str) -> None:
        super().__init__(
            f"Duplicate route id '{route_id}' in {second_file} "
            f"(first defined in {first_file})",
            {"id": route_id, "first": first_file, "second": second_file},
        )
        self.route_id = route_id
