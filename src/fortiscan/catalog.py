"""Human-readable names and descriptions for every violation type."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable, Mapping

from fortiscan.scanner.models import Severity, Violation


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    description: str
    severity: Severity


C, H, M, L = Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW

CATALOG: dict[str, CatalogEntry] = {
    # Discovery
    "suspicious_filename_unicode": CatalogEntry(
        "Suspicious filename", "File name contains bidirectional control characters.", M),
    "suspicious_double_extension": CatalogEntry(
        "Double extension", "File name hides a PHP extension behind another one.", M),
    "php_payload_in_non_php": CatalogEntry(
        "PHP payload in non-PHP file", "A non-PHP file contains PHP open tags.", H),
    "read_error": CatalogEntry("Unreadable file", "The file could not be read.", H),
    "parse_error": CatalogEntry("Parse error", "The file could not be parsed as PHP.", H),
    "config_file_too_large": CatalogEntry(
        "File too large", "File exceeds the size limit for its extension ({size} bytes).", M),
    # Lexical
    "invalid_token_usage": CatalogEntry("Invalid token usage", "Use of invalid token {token}.", H),
    "invalid_token_assignment": CatalogEntry(
        "Invalid token assignment", "Invalid token {token} assigned to a variable.", M),
    "invalid_token_function_argument": CatalogEntry(
        "Invalid token argument", "Invalid token {token} passed as an argument.", M),
    "blocklist_instantiation": CatalogEntry(
        "Blocklisted instantiation", "Instantiation of blocklisted class {token}.", H),
    "blocklist_constructor": CatalogEntry(
        "Blocklisted constructor", "Constructor call on blocklisted class {token}.", H),
    "blocklist_class_reference": CatalogEntry(
        "Blocklisted class reference", "Static reference to blocklisted class {token}.", H),
    "blocklist_method": CatalogEntry(
        "Blocklisted method", "Method {method} of blocklisted class {token} is not allowed.", H),
    "forbidden_function": CatalogEntry("Forbidden function", "Call to forbidden function {function}().", C),
    "forbidden_function_assignment": CatalogEntry(
        "Forbidden function assignment", "Forbidden function name {function} stored in a variable.", H),
    "unsupported_function": CatalogEntry(
        "Unsupported function", "Call to unsupported function {function}().", M),
    # Namespaces
    "forbidden_namespace_import": CatalogEntry(
        "Forbidden namespace import", "Import from forbidden namespace {namespace}.", C),
    "forbidden_namespace_import_function": CatalogEntry(
        "Forbidden function import", "Function import from forbidden namespace {namespace}.", C),
    "forbidden_namespace_import_const": CatalogEntry(
        "Forbidden constant import", "Constant import from forbidden namespace {namespace}.", C),
    "forbidden_namespace_reference": CatalogEntry(
        "Forbidden namespace reference", "Reference to forbidden namespace {namespace}.", C),
    "forbidden_namespace_string": CatalogEntry(
        "Forbidden namespace string", "String mentions forbidden namespace {namespace}.", H),
    "forbidden_namespace_string_reference": CatalogEntry(
        "Forbidden namespace string", "String literal names forbidden namespace {namespace}.", H),
    "forbidden_namespace_extends": CatalogEntry(
        "Forbidden parent class", "Class extends {class_name} from forbidden namespace {namespace}.", C),
    "forbidden_namespace_implements": CatalogEntry(
        "Forbidden interface",
        "Class implements {class_name} from forbidden namespace {namespace}.", C),
    "forbidden_namespace_trait_use": CatalogEntry(
        "Forbidden trait", "Class uses trait {class_name} from forbidden namespace {namespace}.", C),
    "always_forbidden_reflection": CatalogEntry(
        "Reflection", "Reflection class {class_name} used ({kind}).", H),
    "reflection_usage": CatalogEntry("Reflection usage", "Reflection API usage: {class_name}.", H),
    # Function calls
    "always_forbidden_function": CatalogEntry(
        "Always-forbidden function", "Call to always-forbidden function {function}().", C),
    "config_dangerous_function": CatalogEntry(
        "Dangerous function", "Call to host-listed dangerous function {function}().", M),
    "config_risky_function": CatalogEntry(
        "Risky function", "Call to host-listed risky function {function}().", L),
    "obfuscation_function": CatalogEntry(
        "Obfuscation function", "Call to obfuscation-capable function {function}().", M),
    "function_call_chain_forbidden": CatalogEntry(
        "Forbidden call chain", "{function}() returns a forbidden construct through its call chain.", C),
    "dynamic_code_from_superglobal": CatalogEntry(
        "Code from request input", "{function}() executes code derived from request input.", C),
    "backdoor_variable_function_call": CatalogEntry(
        "Variable function call", "Function called through variable ${var}.", H),
    "backdoor_variable_function_call_superglobal": CatalogEntry(
        "Variable function from input", "Function name in ${var} comes from request input.", C),
    "backdoor_variable_function_call_chain_forbidden": CatalogEntry(
        "Variable function chain", "${var}() resolves to {resolved_function}() which is forbidden.", C),
    "backdoor_concat_function_call": CatalogEntry(
        "Concatenated function call", "Function name built by concatenation: {expression}.", H),
    "backdoor_concat_function_call_unknown": CatalogEntry(
        "Unresolved concatenated call", "Concatenated function name could not be resolved.", H),
    "backdoor_concat_function_call_always_forbidden": CatalogEntry(
        "Concatenated forbidden call", "Concatenated call resolves to forbidden {expression}().", C),
    "backdoor_concat_function_call_unsupported": CatalogEntry(
        "Concatenated unsupported call", "Concatenated call resolves to unsupported {expression}().", M),
    "backdoor_concat_function_call_chain_forbidden": CatalogEntry(
        "Concatenated call chain", "Concatenated call {expression}() chains to a forbidden construct.", C),
    "always_forbidden_obfuscated_eval": CatalogEntry(
        "Obfuscated eval", "eval() runs the output of a decoding chain.", C),
    "always_forbidden_wrapper_stream": CatalogEntry(
        "Forbidden stream wrapper", "{function}() uses forbidden stream wrapper {wrapper}.", C),
    # Callbacks
    "callback_always_forbidden": CatalogEntry(
        "Forbidden callback", "{function}() given forbidden callback {callback}.", C),
    "always_forbidden_callback_to_forbidden_function": CatalogEntry(
        "Forbidden callback registration", "{function}() registers forbidden {callback}().", C),
    "callback_unsupported": CatalogEntry(
        "Unsupported callback", "{function}() given unsupported callback {callback}.", M),
    "callback_user_defined_forbidden_chain": CatalogEntry(
        "Callback chain", "{function}() given {callback} which chains to a forbidden construct.", C),
    "callback_closure_forbidden": CatalogEntry(
        "Forbidden closure callback", "Closure passed to {function}() calls forbidden code.", C),
    "closure_calls_always_forbidden": CatalogEntry(
        "Closure calls forbidden function", "Closure calls forbidden function {function}().", C),
    "closure_calls_unsupported": CatalogEntry(
        "Closure calls unsupported function", "Closure calls unsupported function {function}().", M),
    "closure_calls_forbidden_chain": CatalogEntry(
        "Closure call chain", "Closure calls {function}() which returns a forbidden construct.", C),
    # Methods and classes
    "backdoor_dynamic_method_call_complex": CatalogEntry(
        "Computed method name", "Method name computed from an expression.", H),
    "backdoor_dynamic_method_call_superglobal": CatalogEntry(
        "Method name from input", "Method name in ${var} comes from request input.", C),
    "backdoor_dynamic_method_call_unresolved": CatalogEntry(
        "Unresolved method name", "Method name in ${var} could not be resolved.", H),
    "backdoor_dynamic_method_call_forbidden": CatalogEntry(
        "Dynamic forbidden method", "Method ${var} resolves to forbidden {resolved_method}.", C),
    "backdoor_dynamic_method_call_chain_forbidden": CatalogEntry(
        "Dynamic method chain",
        "Method ${var} resolves to {class_name}::{resolved_method} which chains to a forbidden construct.",
        C),
    "config_blocked_method": CatalogEntry(
        "Blocked method", "Method {method} of {class_name} is not in the allowed list.", C),
    "anonymous_class_leak": CatalogEntry(
        "Anonymous class leak", "Anonymous class with dangerous members is instantiated.", H),
    "backdoor_dynamic_class_instantiation_complex": CatalogEntry(
        "Computed class name", "Class name computed from an expression.", H),
    "backdoor_dynamic_class_instantiation_superglobal": CatalogEntry(
        "Class name from input", "Class name in ${var} comes from request input.", C),
    "backdoor_dynamic_class_instantiation_unresolved": CatalogEntry(
        "Unresolved class name", "Class name in ${var} could not be resolved.", H),
    "backdoor_dynamic_class_instantiation_forbidden": CatalogEntry(
        "Dynamic forbidden class", "Class in ${var} resolves to forbidden {class_name}.", C),
    "always_forbidden_magic_method": CatalogEntry(
        "Forbidden magic method", "Magic method {method} is not allowed.", H),
    "magic_method_defined": CatalogEntry("Magic method", "Magic method {method} is defined.", L),
    # Includes, variables, leaks
    "always_forbidden_wrapper_stream_include": CatalogEntry(
        "Forbidden include wrapper", "Include through forbidden stream wrapper {wrapper}.", C),
    "include_forbidden_wrapper": CatalogEntry(
        "Include wrapper", "Include path uses stream wrapper {wrapper}.", C),
    "always_forbidden_dynamic_include": CatalogEntry(
        "Dynamic include", "Include path is computed at runtime ({expr_type}).", H),
    "include_dynamic_path_superglobal": CatalogEntry(
        "Include from input", "Include path derives from request input.", C),
    "include_dynamic_path": CatalogEntry("Dynamic include path", "Include path is not a literal.", H),
    "variable_variable_usage": CatalogEntry(
        "Variable variable", "Variable variable {expression} used.", H),
    "dynamic_property_access": CatalogEntry(
        "Dynamic property", "Property accessed through ${var}.", M),
    "dynamic_property_access_superglobal": CatalogEntry(
        "Property name from input", "Property name in ${var} comes from request input.", C),
    "dynamic_property_access_chain_forbidden": CatalogEntry(
        "Dynamic property chain", "Property ${var} on {class_name} resolves to a forbidden construct.", C),
    "dynamic_static_property_access": CatalogEntry(
        "Dynamic static property", "Static property name computed: {expression}.", M),
    "global_or_session_leak": CatalogEntry(
        "Global or session leak", "Dangerous value stored in {target}.", H),
    "anonymous_function_leak": CatalogEntry(
        "Closure leak", "Closure calling dangerous code stored for later use.", H),
    "static_variable_leak": CatalogEntry(
        "Static variable leak", "Static variable ${var} holds a dangerous value.", H),
    # Returns
    "return_forbidden_function": CatalogEntry(
        "Returns forbidden function", "Function returns forbidden {function}.", C),
    "return_forbidden_class": CatalogEntry(
        "Returns forbidden class", "Function returns an instance of forbidden {class_name}.", C),
    "return_indirect_forbidden_chain": CatalogEntry(
        "Indirect forbidden return", "Returned {function}() chains to a forbidden construct.", C),
    "return_indirect_forbidden_method_chain": CatalogEntry(
        "Indirect forbidden method return",
        "Returned {class_name}::{method}() chains to a forbidden construct.", C),
    # Headline
    "composer.composer_file_missing": CatalogEntry(
        "composer.json missing", "composer.json not found.", M),
    "composer.composer_file_invalid": CatalogEntry(
        "composer.json invalid", "composer.json is not valid JSON.", H),
    "composer.forbidden_package_dependency": CatalogEntry(
        "Forbidden package", "Composer requires forbidden package {package} ({version}).", C),
    "composer.exception": CatalogEntry("Composer scan failed", "The composer scan raised an error.", H),
    "config.schema": CatalogEntry(
        "Plugin config invalid", "plugin.config.json failed validation.", H),
    "config.exception": CatalogEntry(
        "Plugin config check failed", "The plugin config check raised an error.", H),
    "hostconfig.error": CatalogEntry("Host config invalid", "The host configuration is invalid.", H),
    "manifest.invalid": CatalogEntry(
        "Permission manifest invalid", "The permission manifest is invalid.", H),
    "route.invalid": CatalogEntry("Route file invalid", "A route file is invalid.", H),
    "scanner.exception": CatalogEntry("Scanner failed", "The file scanner raised an error.", H),
    "content.exception": CatalogEntry("Content scan failed", "The content scan raised an error.", H),
    "token.exception": CatalogEntry("Token scan failed", "The token analysis raised an error.", H),
    "ast.exception": CatalogEntry("Syntax scan failed", "The syntax-tree scan raised an error.", H),
}

DEFAULT_SEVERITY = Severity.MEDIUM


@dataclass(frozen=True)
class FormattedViolation:
    type: str
    name: str
    description: str
    severity: str
    file: str
    line: int
    snippet: str = ""
    issue: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def lookup(slug: str) -> CatalogEntry:
    """Catalog entry for ``slug``; unknown slugs get a generic one."""
    entry = CATALOG.get(slug)
    if entry is not None:
        return entry
    name = slug.replace(".", " ").replace("_", " ").title()
    return CatalogEntry(name, f'An issue of type "{slug}" was reported.', DEFAULT_SEVERITY)


def format_violation(violation: Violation | Mapping[str, Any]) -> FormattedViolation:
    record = violation.to_dict() if isinstance(violation, Violation) else dict(violation)
    slug = str(record.get("type", "unknown"))
    entry = lookup(slug)
    issue = str(record.get("issue", ""))

    try:
        description = entry.description.format_map(record)
    except (KeyError, IndexError, ValueError):
        description = issue or entry.description

    severity = record.get("severity") or entry.severity.value
    if isinstance(severity, Severity):
        severity = severity.value
    return FormattedViolation(
        type=slug,
        name=entry.name,
        description=description,
        severity=str(severity),
        file=str(record.get("file", "")),
        line=int(record.get("line") or 0),
        snippet=str(record.get("snippet", "")),
        issue=issue,
    )


def format_many(violations: Iterable[Violation | Mapping[str, Any]]) -> list[FormattedViolation]:
    return [format_violation(v) for v in violations]


def list_known_violations() -> list[tuple[str, CatalogEntry]]:
    return sorted(CATALOG.items())
