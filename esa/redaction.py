"""Redaction of sensitive text before it is summarised or sent elsewhere."""

from __future__ import annotations

import functools
import json
import os
import re
import threading
import tomllib
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence

POLICY_NONE = "none"
KIND_MARKER_REGEX = "builtin/marker-regex"
KIND_EXTERNAL_HTTP = "external/http"

RESOURCE_TYPE_COMPACTION_INPUT = "compaction_input"
RESOURCE_TYPE_COMPACTION_SUMMARY = "compaction_summary"

DEFAULT_REDACT_TEXT = "[REDACTED]"
DEFAULT_CONFIG_FILE = "esa.redaction.toml"
DEFAULT_EXTERNAL_TIMEOUT = 2.0


class RedactionError(Exception):
    """Raised when a policy cannot be built or cannot redact a text."""


@dataclass(frozen=True)
class RedactionContext:
    """Describes the resource a text comes from."""

    resource_path: str = ""
    resource_type: str = ""


@dataclass
class ExternalConfig:
    """Settings for an external redaction service; timeout is in seconds."""

    url: str = ""
    timeout: float = 0.0


@dataclass
class RedactionConfig:
    """Selects and configures a redaction policy."""

    kind: str = ""
    config_file: str = ""
    fail_open: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    external: ExternalConfig = field(default_factory=ExternalConfig)


class Policy(Protocol):
    """Removes sensitive information from text."""

    @property
    def name(self) -> str: ...

    def redact(self, ctx: RedactionContext, text: str) -> str: ...


Builder = Callable[[RedactionConfig], Policy]


class NoopPolicy:
    """Leaves text unchanged."""

    @property
    def name(self) -> str:
        return POLICY_NONE

    def redact(self, ctx: RedactionContext, text: str) -> str:
        """Return ``text`` as it is; raises TypeError if it is not a string."""
        if not isinstance(text, str):
            raise TypeError(f"text to redact must be a string, not {type(text).__name__}")
        return text


@dataclass
class FailOpenPolicy:
    """Wraps a policy so that a failure returns the original text."""

    inner: Policy | None = None

    @property
    def name(self) -> str:
        return self.inner.name if self.inner is not None else POLICY_NONE

    def redact(self, ctx: RedactionContext, text: str) -> str:
        if self.inner is None:
            return text
        try:
            return self.inner.redact(ctx, text)
        except Exception:
            return text


# --- glob matching -------------------------------------------------------


def _class_atom(pattern: str, j: int) -> tuple[str, int]:
    if j >= len(pattern):
        raise ValueError(f"bad pattern: {pattern}")
    if pattern[j] == "\\":
        if j + 1 >= len(pattern):
            raise ValueError(f"bad pattern: {pattern}")
        return pattern[j + 1], j + 2
    return pattern[j], j + 1


def _translate_class(pattern: str, i: int) -> tuple[str, int]:
    n = len(pattern)
    j = i + 1
    negate = j < n and pattern[j] in "!^"
    if negate:
        j += 1
    items: list[str] = []
    while True:
        if j >= n:
            raise ValueError(f"bad pattern: {pattern}")
        if pattern[j] == "]" and items:
            break
        low, j = _class_atom(pattern, j)
        if j + 1 < n and pattern[j] == "-" and pattern[j + 1] != "]":
            high, j = _class_atom(pattern, j + 1)
            if high < low:
                raise ValueError(f"bad pattern: {pattern}")
            items.append(f"{re.escape(low)}-{re.escape(high)}")
        else:
            items.append(re.escape(low))
    body = "".join(items)
    return ("[^/" + body + "]" if negate else "[" + body + "]"), j + 1


def _split_braces(pattern: str, i: int) -> tuple[list[str], int]:
    n = len(pattern)
    depth = 0
    alternatives: list[str] = []
    start = i + 1
    j = i
    while j < n:
        char = pattern[j]
        if char == "\\":
            j += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                alternatives.append(pattern[start:j])
                return alternatives, j + 1
        elif char == "," and depth == 1:
            alternatives.append(pattern[start:j])
            start = j + 1
        j += 1
    raise ValueError(f"bad pattern: {pattern}")


def _translate(pattern: str) -> str:
    parts: list[str] = []
    n = len(pattern)
    i = 0
    while i < n:
        char = pattern[i]
        if char == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            whole_segment = (
                j - i == 2 and (i == 0 or pattern[i - 1] == "/") and (j == n or pattern[j] == "/")
            )
            if whole_segment and j == n:
                if parts and parts[-1] == "/":
                    parts[-1] = "(?:/.*)?"
                else:
                    parts.append(".*")
            elif whole_segment:
                parts.append("(?:.*/)?")
                j += 1
            else:
                parts.append("[^/]*")
            i = j
        elif char == "?":
            parts.append("[^/]")
            i += 1
        elif char == "[":
            cls, i = _translate_class(pattern, i)
            parts.append(cls)
        elif char == "{":
            alternatives, i = _split_braces(pattern, i)
            parts.append("(?:" + "|".join(_translate(alt) for alt in alternatives) + ")")
        elif char == "\\":
            if i + 1 >= n:
                raise ValueError(f"bad pattern: {pattern}")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        else:
            parts.append(re.escape(char))
            i += 1
    return "".join(parts)


@functools.lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(_translate(pattern), re.DOTALL)
    except re.error as exc:
        raise ValueError(f"bad pattern: {pattern}") from exc


def glob_match(pattern: str, path: str) -> bool:
    """Match a slash-separated path against a glob supporting ``**`` and ``{a,b}``.

    Raises ValueError for a malformed pattern.
    """
    return _glob_regex(pattern).fullmatch(path) is not None


def _to_slash(path: str) -> str:
    return path.replace(os.sep, "/") if os.sep != "/" else path


def _match_any(patterns: Sequence[str], resource_path: str) -> bool:
    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        try:
            if glob_match(pattern, resource_path):
                return True
        except ValueError:
            continue
    return False


# --- marker and regex rules ----------------------------------------------


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _template_ref(template: str, i: int) -> tuple[str | None, int]:
    n = len(template)
    brace = i < n and template[i] == "{"
    start = i + 1 if brace else i
    j = start
    while j < n and (template[j].isalnum() or template[j] == "_"):
        j += 1
    if j == start:
        return None, i
    if brace:
        if j >= n or template[j] != "}":
            return None, i
        return template[start:j], j + 1
    return template[start:j], j


def _group_text(match: re.Match[str], name: str) -> str:
    if name.isascii() and name.isdigit():
        number = int(name)
        if number <= match.re.groups:
            return match.group(number) or ""
        return ""
    if name in match.re.groupindex:
        return match.group(name) or ""
    return ""


def _expand(template: str, match: re.Match[str]) -> str:
    """Expand ``$1``, ``${name}`` and ``$$`` in a replacement template."""
    out: list[str] = []
    n = len(template)
    i = 0
    while i < n:
        k = template.find("$", i)
        if k < 0:
            out.append(template[i:])
            break
        out.append(template[i:k])
        i = k + 1
        if i < n and template[i] == "$":
            out.append("$")
            i += 1
            continue
        name, end = _template_ref(template, i)
        if name is None:
            out.append("$")
            continue
        out.append(_group_text(match, name))
        i = end
    return "".join(out)


def _string(table: Mapping[str, Any], key: str) -> str:
    value = table.get(key, "")
    if not isinstance(value, str):
        raise RedactionError(f"redaction config field {key!r} must be a string")
    return value


def _strings(table: Mapping[str, Any], key: str) -> list[str]:
    value = table.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise RedactionError(f"redaction config field {key!r} must be a list of strings")
    return list(value)


def _compile(source: str) -> re.Pattern[str]:
    try:
        return re.compile(source)
    except re.error as exc:
        raise RedactionError(f"invalid redaction pattern {_quote(source)}: {exc}") from exc


@dataclass(frozen=True)
class _Rule:
    name: str
    kind: str
    replacement: str
    scope: list[str]
    resource_types: list[str]
    open: re.Pattern[str] | None = None
    close: re.Pattern[str] | None = None
    pattern: re.Pattern[str] | None = None

    def applies_to(self, ctx: RedactionContext) -> bool:
        if self.resource_types:
            wanted = ctx.resource_type.casefold()
            if not any(t.strip().casefold() == wanted for t in self.resource_types):
                return False
        if not self.scope:
            return True
        return _match_any(self.scope, _to_slash(ctx.resource_path))

    def apply(self, text: str) -> str:
        if self.kind == "marker":
            return self._redact_markers(text)
        assert self.pattern is not None
        return self.pattern.sub(lambda m: _expand(self.replacement, m), text)

    def _redact_markers(self, text: str) -> str:
        assert self.open is not None and self.close is not None
        if self.open.search("") or self.close.search(""):
            raise RedactionError("marker rule patterns must not match empty string")
        output = text
        while (opening := self.open.search(output)) is not None:
            tail = output[opening.end():]
            closing = self.close.search(tail)
            if closing is None:
                raise RedactionError(f"marker rule {_quote(self.name)} close pattern not found")
            output = output[: opening.start()] + self.replacement + tail[closing.end():]
        return output


def _compile_rules(rules: Sequence[Mapping[str, Any]]) -> list[_Rule]:
    compiled: list[_Rule] = []
    for raw in rules:
        kind = _string(raw, "type").strip()
        if not kind:
            raise RedactionError("redaction rule type is required")
        name = _string(raw, "name").strip() or kind
        replacement = _string(raw, "replacement").strip() or DEFAULT_REDACT_TEXT
        scope = _strings(raw, "scope")
        resource_types = _strings(raw, "resource_types")
        if kind == "marker":
            open_source = _string(raw, "open").strip()
            close_source = _string(raw, "close").strip()
            if not open_source or not close_source:
                raise RedactionError(f"marker rule {_quote(name)} requires open and close patterns")
            compiled.append(
                _Rule(
                    name=name,
                    kind=kind,
                    replacement=replacement,
                    scope=scope,
                    resource_types=resource_types,
                    open=_compile(open_source),
                    close=_compile(close_source),
                )
            )
        elif kind == "regex":
            source = _string(raw, "pattern").strip()
            if not source:
                raise RedactionError(f"regex rule {_quote(name)} requires a pattern")
            compiled.append(
                _Rule(
                    name=name,
                    kind=kind,
                    replacement=replacement,
                    scope=scope,
                    resource_types=resource_types,
                    pattern=_compile(source),
                )
            )
        else:
            raise RedactionError(f"unsupported redaction rule type: {kind}")
    return compiled


class MarkerRegexPolicy:
    """Redacts marked spans and regex matches within configured paths."""

    def __init__(
        self,
        rules: Sequence[Mapping[str, Any]],
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
    ) -> None:
        self._include = list(include)
        self._exclude = list(exclude)
        self._rules = _compile_rules(rules)

    @property
    def name(self) -> str:
        return KIND_MARKER_REGEX

    def _path_in_scope(self, resource_path: str) -> bool:
        resource_path = _to_slash(resource_path.strip())
        if not resource_path:
            return not self._include and not self._exclude
        if self._include and not _match_any(self._include, resource_path):
            return False
        if self._exclude and _match_any(self._exclude, resource_path):
            return False
        return True

    def redact(self, ctx: RedactionContext, text: str) -> str:
        if not self._path_in_scope(ctx.resource_path):
            return text
        redacted = text
        for rule in self._rules:
            if rule.applies_to(ctx):
                redacted = rule.apply(redacted)
        return redacted


def _load_marker_regex(cfg: RedactionConfig) -> MarkerRegexPolicy:
    path = cfg.config_file.strip() or DEFAULT_CONFIG_FILE
    if not os.path.isabs(path):
        path = os.path.join(os.getcwd(), path)
    try:
        with open(path, "rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:
        raise RedactionError(f"cannot read redaction config {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise RedactionError(f"invalid redaction config {path}: {exc}") from exc

    paths = data.get("paths", {})
    if not isinstance(paths, dict):
        raise RedactionError("redaction config field 'paths' must be a table")
    rules = data.get("rules", [])
    if not isinstance(rules, list) or not all(isinstance(rule, dict) for rule in rules):
        raise RedactionError("redaction config field 'rules' must be an array of tables")
    return MarkerRegexPolicy(
        rules,
        include=_strings(paths, "include"),
        exclude=_strings(paths, "exclude"),
    )


# --- external service ----------------------------------------------------


class ExternalHTTPPolicy:
    """Sends text to an HTTP service that returns its redacted form."""

    def __init__(self, url: str, timeout: float = 0.0) -> None:
        url = url.strip()
        if not url:
            raise RedactionError("external redaction url is required")
        self.url = url
        self.timeout = timeout if timeout > 0 else DEFAULT_EXTERNAL_TIMEOUT

    @property
    def name(self) -> str:
        return KIND_EXTERNAL_HTTP

    def redact(self, ctx: RedactionContext, text: str) -> str:
        body: dict[str, str] = {"text": text}
        if ctx.resource_path:
            body["resource_path"] = ctx.resource_path
        if ctx.resource_type:
            body["resource_type"] = ctx.resource_type
        request = urllib.request.Request(
            self.url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                raw = response.read()
        except urllib.error.HTTPError as exc:
            raise RedactionError("external redaction service returned non-2xx") from exc
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise RedactionError(f"external redaction request failed: {exc}") from exc
        if not 200 <= status <= 299:
            raise RedactionError("external redaction service returned non-2xx")

        try:
            decoded = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise RedactionError(f"invalid external redaction response: {exc}") from exc
        if decoded is None:
            decoded = {}
        if not isinstance(decoded, dict):
            raise RedactionError("invalid external redaction response: expected an object")
        redacted = decoded.get("redacted_text") or ""
        plain = decoded.get("text") or ""
        if not isinstance(redacted, str) or not isinstance(plain, str):
            raise RedactionError("invalid external redaction response: expected strings")
        return redacted or plain or text


# --- registry ------------------------------------------------------------


class _Registry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._policies: dict[str, Policy] = {}
        self._builders: dict[str, Builder] = {}

    def register(self, policy: Policy | None) -> None:
        if policy is None:
            return
        name = policy.name.strip()
        if not name:
            return
        with self._lock:
            self._policies[name] = policy

    def register_builder(self, name: str, builder: Builder | None) -> None:
        if builder is None:
            return
        name = name.strip()
        if not name:
            return
        with self._lock:
            self._builders[name] = builder

    def policy_by_name(self, name: str) -> Policy | None:
        name = name.strip() or POLICY_NONE
        with self._lock:
            return self._policies.get(name, self._policies.get(POLICY_NONE))

    def builder_by_name(self, name: str) -> Builder | None:
        name = name.strip() or POLICY_NONE
        with self._lock:
            return self._builders.get(name)


_registry = _Registry()


def register_policy(policy: Policy) -> None:
    """Make a ready-built policy available by its name."""
    _registry.register(policy)


def register_policy_builder(name: str, builder: Builder) -> None:
    """Make a policy kind available that is built from a RedactionConfig."""
    _registry.register_builder(name, builder)


def policy_by_name(name: str) -> Policy | None:
    """Return the registered policy called ``name``, or the no-op policy."""
    return _registry.policy_by_name(name)


def build_policy(cfg: RedactionConfig, legacy_name: str = "") -> tuple[Policy, str]:
    """Build the policy ``cfg`` selects, using ``legacy_name`` when no kind is set.

    Returns the policy and the kind it was built for.
    """
    kind = cfg.kind.strip() or legacy_name.strip() or POLICY_NONE
    builder = _registry.builder_by_name(kind)
    if builder is not None:
        policy = builder(cfg)
    else:
        found = _registry.policy_by_name(kind)
        if found is None:
            raise RedactionError("redaction policy not found")
        policy = found
    if cfg.fail_open:
        return FailOpenPolicy(policy), kind
    return policy, kind


_registry.register(NoopPolicy())
_registry.register_builder(POLICY_NONE, lambda cfg: NoopPolicy())
_registry.register_builder(KIND_MARKER_REGEX, _load_marker_regex)
_registry.register_builder(
    KIND_EXTERNAL_HTTP,
    lambda cfg: ExternalHTTPPolicy(cfg.external.url, cfg.external.timeout),
)