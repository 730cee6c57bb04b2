import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import toml

from .cli_config import get_config
from .dependency import DEPENDENCY_NAME_PATTERN
from .error_handling import ConfigParseError, ErrorCategory, log_parsing_error

LITERAL_SOURCE = "<literal>"

PIN_FIELDS = ("toolchainPin", "toolchain_pin")
PIN_SOURCES_FIELDS = ("pinSources", "pin_sources")
NIX_INPUT_ATTRIBUTES = ("buildInputs", "nativeBuildInputs", "packages")

_NIX_IMPORT_BINDING = re.compile(
    r"(?P<name>[A-Za-z_][\w'\-]*)\s*=\s*import\s+"
    r"(?P<target>\.{1,2}/[^\s;{}()]+|/[^\s;{}()]+|<[^>\s]+>"
    r"|[A-Za-z_][\w'\-]*(?:\.[A-Za-z_][\w'\-]*)+)"
)
_NIX_INPUT_NAMES = "|".join(NIX_INPUT_ATTRIBUTES)
# Not preceded by a name character, so my-packages or shell.packages do not count
_NIX_INPUT_ASSIGNMENT = re.compile(
    r"(?<![\w'\-.])(?P<attr>" + _NIX_INPUT_NAMES + r")\s*=(?!=)"
)
_NIX_INPUT_LIST = re.compile(
    r"(?<![\w'\-.])(?P<attr>" + _NIX_INPUT_NAMES + r")\s*=\s*"
    r"(?:with\s+(?P<scope>[A-Za-z_][\w'\-.]*)\s*;\s*)?\["
)
_NIX_CONCAT = re.compile(r"\s*\+\+\s*")
_NIX_FETCHED_BINDING = re.compile(
    r"(?P<name>[A-Za-z_][\w'\-]*)\s*=\s*import\s*\(\s*(?:builtins\.)?fetchTarball\s*"
    r"\{(?P<attrs>[^{}]*)\}\s*\)"
)
_NIX_STRING_ATTR = re.compile(r'(?P<key>[A-Za-z_]\w*)\s*=\s*"(?P<value>[^"]*)"\s*;')
_NIX_BRACKETS = {"[": "]", "(": ")", "{": "}"}


@dataclass
class RawDescriptor:
    """Descriptor fields as declared, before validation and pin resolution."""

    source: str
    source_format: str
    dependencies: List[str] = field(default_factory=list)
    toolchain_pin: Optional[str] = None
    name: Optional[str] = None
    inline_pins: Dict[str, Dict[str, str]] = field(default_factory=dict)
    sources_file: Optional[str] = None


def _fail(
    message: str,
    source: str,
    function: str,
    line_number: Optional[int] = None,
    exception: Optional[Exception] = None,
    category: ErrorCategory = ErrorCategory.PARSING,
) -> ConfigParseError:
    """Report a parsing failure and build the exception to raise."""
    log_parsing_error(
        message,
        module="parsers",
        function=function,
        line_number=line_number,
        file_path=None if source == LITERAL_SOURCE else source,
        exception=exception,
        category=category,
    )
    return ConfigParseError(
        message,
        source=None if source == LITERAL_SOURCE else source,
        line_number=line_number,
    )


def _fail_file(
    message: str, source: str, function: str, exception: Optional[Exception] = None
) -> ConfigParseError:
    return _fail(
        message, source, function, exception=exception, category=ErrorCategory.FILESYSTEM
    )


def _fail_name(
    message: str, source: str, function: str, line_number: Optional[int] = None
) -> ConfigParseError:
    return _fail(
        message,
        source,
        function,
        line_number=line_number,
        category=ErrorCategory.VALIDATION,
    )


def _validate_file_path(file_path: str) -> Path:
    """
    Validate a descriptor path before reading it.

    Args:
        file_path: The file path to validate

    Returns:
        Path: Validated and resolved path object

    Raises:
        ConfigParseError: If the path is missing, not a file, of a
            disallowed type, or too large
    """
    if not file_path or not isinstance(file_path, (str, Path)):
        raise _fail_file(
            "File path must be a non-empty string",
            LITERAL_SOURCE,
            "_validate_file_path",
        )

    path = Path(file_path).resolve()

    if not path.exists():
        raise _fail_file(f"File does not exist: {path}", str(path), "_validate_file_path")
    if not path.is_file():
        raise _fail_file(f"Path is not a file: {path}", str(path), "_validate_file_path")

    config = get_config()
    allowed_extensions = {
        ext.lower() for ext in config.loader.allowed_file_extensions
    }
    if path.suffix.lower() not in allowed_extensions:
        raise _fail_file(
            f"File type not allowed: {path.suffix or path.name}",
            str(path),
            "_validate_file_path",
        )

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise _fail_file(
            f"Cannot access file: {e}", str(path), "_validate_file_path", exception=e
        )

    max_file_size = config.loader.max_file_size_bytes
    if file_size > max_file_size:
        raise _fail_file(
            f"File too large: {file_size} bytes (max: {max_file_size})",
            str(path),
            "_validate_file_path",
        )

    return path


def _safe_read_file(path: Path) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise _fail_file(
            "File contains invalid UTF-8 characters",
            str(path),
            "_safe_read_file",
            exception=e,
        )
    except OSError as e:
        raise _fail_file(
            f"Error reading file: {e}", str(path), "_safe_read_file", exception=e
        )


def detect_file_type(file_path: str) -> str:
    """
    Detect the descriptor format based on filename.

    Args:
        file_path: Path to the file

    Returns:
        str: One of "nix", "toml" or "json"

    Raises:
        ConfigParseError: If the file type is not supported
    """
    suffix = Path(file_path).suffix.lower()
    file_type_map = {".nix": "nix", ".toml": "toml", ".json": "json"}
    if suffix in file_type_map:
        return file_type_map[suffix]
    raise _fail(
        f"Unsupported file type: {Path(file_path).name}",
        str(file_path),
        "detect_file_type",
    )


def get_supported_file_types() -> List[str]:
    """Return a list of supported descriptor file types."""
    return ["shell.nix", "default.nix", "*.nix", "*.toml", "*.json"]


def default_descriptor_name(file_path: str) -> str:
    """shell.nix and default.nix are named after their directory."""
    path = Path(file_path)
    if path.name in ("shell.nix", "default.nix") and path.parent.name:
        return path.parent.name
    return path.stem


def _normalize_dependency_names(
    items: List[Any],
    source: str,
    function: str,
    scope: Optional[str] = None,
    line_number: Optional[int] = None,
) -> List[str]:
    """Validate names, strip package-set qualifiers, and keep duplicates."""
    config = get_config()
    prefixes = []
    if config.loader.strip_pkgs_prefix:
        prefixes.append("pkgs.")
    if scope and f"{scope}." not in prefixes:
        prefixes.append(f"{scope}.")

    names = []
    for item in items:
        if not isinstance(item, str):
            raise _fail_name(
                f"Dependency names must be strings, got {type(item).__name__}",
                source,
                function,
                line_number=line_number,
            )
        name = item.strip()
        for prefix in prefixes:
            if name.startswith(prefix) and len(name) > len(prefix):
                name = name[len(prefix):]
                break
        if not name:
            raise _fail_name(
                "Dependency names must not be empty",
                source,
                function,
                line_number=line_number,
            )
        if not _is_valid_dependency_name(name):
            raise _fail_name(
                f"Invalid dependency name: {item[:100]!r}",
                source,
                function,
                line_number=line_number,
            )
        names.append(name)
    return names


def _check_dependency_limit(names: List[str], source: str, function: str) -> None:
    """The limit applies to all input lists of a descriptor together."""
    limit = get_config().loader.max_dependencies
    if len(names) > limit:
        raise _fail_name(
            f"Too many dependencies: {len(names)} (max: {limit})", source, function
        )


def _is_valid_dependency_name(name: str) -> bool:
    return bool(DEPENDENCY_NAME_PATTERN.match(name))


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def parse_descriptor_mapping(
    data: Any, source: str = LITERAL_SOURCE, source_format: str = "literal"
) -> RawDescriptor:
    """
    Parse an already-decoded descriptor record.

    Used directly for embedded literals and by the TOML and JSON parsers.

    Args:
        data: Decoded descriptor (must be a mapping)
        source: Where the record came from, for error messages
        source_format: Format label recorded on the descriptor

    Returns:
        RawDescriptor: Declared fields, duplicates preserved

    Raises:
        ConfigParseError: If the record is malformed
    """
    function = "parse_descriptor_mapping"
    if not isinstance(data, Mapping):
        raise _fail(
            f"Descriptor must be a mapping, got {type(data).__name__}", source, function
        )

    if "dependencies" not in data:
        raise _fail("Missing 'dependencies' declaration", source, function)
    dependencies = data["dependencies"]
    if not isinstance(dependencies, list):
        raise _fail("'dependencies' must be a list of package names", source, function)

    toolchain_pin = _first_present(data, PIN_FIELDS)
    if toolchain_pin is not None and not isinstance(toolchain_pin, str):
        raise _fail("'toolchainPin' must be a string", source, function)

    name = data.get("name")
    if name is not None and not isinstance(name, str):
        raise _fail("'name' must be a string", source, function)

    sources_file = _first_present(data, PIN_SOURCES_FIELDS)
    if sources_file is not None and not isinstance(sources_file, str):
        raise _fail("'pinSources' must be a path string", source, function)

    inline_pins = data.get("pins", {})
    if not isinstance(inline_pins, Mapping) or not all(
        isinstance(entry, Mapping) for entry in inline_pins.values()
    ):
        raise _fail("'pins' must map pin names to tables", source, function)

    names = _normalize_dependency_names(dependencies, source, function)
    _check_dependency_limit(names, source, function)

    return RawDescriptor(
        source=source,
        source_format=source_format,
        dependencies=names,
        toolchain_pin=toolchain_pin.strip() if toolchain_pin else toolchain_pin,
        name=name,
        inline_pins={
            str(pin_name): {str(k): str(v) for k, v in entry.items()}
            for pin_name, entry in inline_pins.items()
        },
        sources_file=sources_file,
    )


def _load_toml(text: str, source: str) -> Any:
    try:
        return toml.loads(text)
    except toml.TomlDecodeError as e:
        raise _fail(
            f"Invalid TOML format: {e.msg}",
            source,
            "parse_toml_descriptor",
            line_number=e.lineno,
            exception=e,
        )


def _load_json(text: str, source: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise _fail(
            f"Invalid JSON format: {e.msg}",
            source,
            "parse_json_descriptor",
            line_number=e.lineno,
            exception=e,
        )


def parse_toml_descriptor(file_path: str) -> RawDescriptor:
    """Parse a TOML descriptor with top-level toolchainPin and dependencies."""
    validated_path = _validate_file_path(file_path)
    source = str(validated_path)
    data = _load_toml(_safe_read_file(validated_path), source)
    return parse_descriptor_mapping(data, source, "toml")


def parse_json_descriptor(file_path: str) -> RawDescriptor:
    """Parse a JSON descriptor with top-level toolchainPin and dependencies."""
    validated_path = _validate_file_path(file_path)
    source = str(validated_path)
    data = _load_json(_safe_read_file(validated_path), source)
    return parse_descriptor_mapping(data, source, "json")


def _line_of(content: str, position: int) -> int:
    return content.count("\n", 0, position) + 1


def _strip_nix_comments(content: str) -> str:
    """Blank out comments, keeping newlines so line numbers stay valid."""
    out = []
    i = 0
    in_string = False
    length = len(content)
    while i < length:
        char = content[i]
        if in_string:
            out.append(char)
            if char == "\\" and i + 1 < length:
                out.append(content[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
        elif char == '"':
            in_string = True
            out.append(char)
            i += 1
        elif char == "#":
            end = content.find("\n", i)
            end = length if end == -1 else end
            out.append(" " * (end - i))
            i = end
        elif content.startswith("/*", i):
            end = content.find("*/", i + 2)
            end = length if end == -1 else end + 2
            out.append("".join("\n" if c == "\n" else " " for c in content[i:end]))
            i = end
        else:
            out.append(char)
            i += 1
    return "".join(out)


def _find_list_end(content: str, open_index: int, source: str) -> int:
    """Return the index of the bracket closing the list opened at open_index."""
    stack = []
    in_string = False
    i = open_index
    while i < len(content):
        char = content[i]
        if in_string:
            if char == "\\":
                i += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in _NIX_BRACKETS:
            stack.append(_NIX_BRACKETS[char])
        elif char in _NIX_BRACKETS.values():
            if not stack or stack.pop() != char:
                raise _fail(
                    f"Unbalanced '{char}'",
                    source,
                    "parse_nix_descriptor",
                    line_number=_line_of(content, i),
                )
            if not stack:
                return i
        i += 1

    raise _fail(
        "Unterminated input list",
        source,
        "parse_nix_descriptor",
        line_number=_line_of(content, open_index),
    )


def _is_local_path(target: str) -> bool:
    return target.startswith(("./", "../", "/"))


def _local_reference(target: str) -> str:
    """Pin reference for a Nix path literal, relative to the descriptor."""
    return target[2:] if target.startswith("./") else target


def _select_nix_toolchain(
    bindings: List[Tuple[str, str]],
    sources_bindings: Dict[str, str],
    fetched_bindings: List[str],
    excluded: set,
    referenced: set,
) -> Optional[str]:
    """Pick the toolchain pin among the let-bound imports."""
    local_candidates = []
    named_candidates = []
    for name, target in bindings:
        if name in excluded or name in sources_bindings:
            continue
        if _is_local_path(target) and target.endswith(".nix"):
            local_candidates.append((name, _local_reference(target)))
        elif "." in target and target.split(".", 1)[0] in sources_bindings:
            named_candidates.append((name, target.split(".", 1)[1]))
    # A fetchTarball import is its own inline pin, named after its binding
    named_candidates += [(name, name) for name in fetched_bindings if name not in excluded]

    for name, reference in local_candidates + named_candidates:
        if name in referenced:
            return reference
    if local_candidates:
        return local_candidates[0][1]
    if named_candidates:
        return named_candidates[0][1]
    return None


def _input_list_bodies(
    code: str, open_index: int, attr: str, source: str
) -> List[Tuple[str, int]]:
    """Bodies and line numbers of a list and the plain lists joined to it by ++."""
    bodies = []
    while True:
        close_index = _find_list_end(code, open_index, source)
        bodies.append((code[open_index + 1 : close_index], _line_of(code, open_index)))
        concat = _NIX_CONCAT.match(code, close_index + 1)
        if not concat:
            return bodies
        open_index = concat.end()
        if not code.startswith("[", open_index):
            raise _fail(
                f"Unsupported expression joined to {attr} with '++'; "
                "only plain lists of package names are allowed",
                source,
                "parse_nix_descriptor",
                line_number=_line_of(code, open_index),
            )


def parse_nix_text(content: str, source: str = LITERAL_SOURCE) -> RawDescriptor:
    """
    Statically read a mkShell expression without evaluating it.

    The input lists must be plain attribute names, optionally joined with
    ``++``; anything that needs evaluation (function calls, strings, nested
    sets, lib.optionals) is rejected.

    Args:
        content: shell.nix source text
        source: Where the text came from, for error messages

    Returns:
        RawDescriptor: Declared inputs and the selected toolchain pin

    Raises:
        ConfigParseError: If no input list is found or a list is malformed
    """
    function = "parse_nix_descriptor"
    code = _strip_nix_comments(content)

    bindings = [
        (m.group("name"), m.group("target"))
        for m in _NIX_IMPORT_BINDING.finditer(code)
    ]
    sources_bindings = {
        name: _local_reference(target)
        for name, target in bindings
        if _is_local_path(target) and Path(target).name == "sources.nix"
    }
    inline_pins = {
        m.group("name"): {
            attr.group("key"): attr.group("value")
            for attr in _NIX_STRING_ATTR.finditer(m.group("attrs"))
        }
        for m in _NIX_FETCHED_BINDING.finditer(code)
    }

    dependencies: List[str] = []
    scopes = set()
    found_list = False
    for assignment in _NIX_INPUT_ASSIGNMENT.finditer(code):
        attr = assignment.group("attr")
        match = _NIX_INPUT_LIST.match(code, assignment.start())
        if not match:
            raise _fail(
                f"Unsupported expression in {attr}; expected a list of package names",
                source,
                function,
                line_number=_line_of(code, assignment.start()),
            )
        found_list = True

        scope = match.group("scope")
        if scope:
            scopes.add(scope)
        for body, line_number in _input_list_bodies(
            code, match.end() - 1, attr, source
        ):
            if any(marker in body for marker in ('"', "(", "{", "[")):
                raise _fail(
                    f"Unsupported expression in {attr}; "
                    "only package names are allowed",
                    source,
                    function,
                    line_number=line_number,
                )
            dependencies.extend(
                _normalize_dependency_names(
                    body.split(), source, function, scope, line_number
                )
            )

    if not found_list:
        raise _fail(
            "No buildInputs, nativeBuildInputs or packages list found",
            source,
            function,
        )
    _check_dependency_limit(dependencies, source, function)

    excluded = scopes | {"pkgs"}
    sources_file = None
    if sources_bindings:
        sources_nix = next(iter(sources_bindings.values()))
        sources_file = str(Path(sources_nix).with_name("sources.json").as_posix())

    return RawDescriptor(
        source=source,
        source_format="nix",
        dependencies=dependencies,
        toolchain_pin=_select_nix_toolchain(
            bindings, sources_bindings, list(inline_pins), excluded, set(dependencies)
        ),
        inline_pins=inline_pins,
        sources_file=sources_file,
    )


def parse_nix_descriptor(file_path: str) -> RawDescriptor:
    """Parse a shell.nix file."""
    validated_path = _validate_file_path(file_path)
    return parse_nix_text(_safe_read_file(validated_path), str(validated_path))


def parse_descriptor_text(
    text: str, file_type: str, source: str = LITERAL_SOURCE
) -> RawDescriptor:
    """
    Parse descriptor text given inline rather than read from a file.

    Args:
        text: Descriptor source text
        file_type: One of "nix", "toml" or "json"
        source: Where the text came from, for error messages

    Returns:
        RawDescriptor: Declared fields

    Raises:
        ConfigParseError: If the text is malformed or the type unknown
    """
    if file_type == "nix":
        return parse_nix_text(text, source)
    if file_type == "toml":
        return parse_descriptor_mapping(_load_toml(text, source), source, "toml")
    if file_type == "json":
        return parse_descriptor_mapping(_load_json(text, source), source, "json")
    raise _fail(
        f"Unsupported descriptor format: {file_type}", source, "parse_descriptor_text"
    )


def parse_descriptor_file(file_path: str) -> RawDescriptor:
    """
    Parse any supported descriptor file type.

    Args:
        file_path: Path to the descriptor

    Returns:
        RawDescriptor: Declared fields

    Raises:
        ConfigParseError: If the file type is not supported or parsing fails
    """
    file_type = detect_file_type(str(file_path))

    parser_map = {
        "nix": parse_nix_descriptor,
        "toml": parse_toml_descriptor,
        "json": parse_json_descriptor,
    }

    raw = parser_map[file_type](str(file_path))
    if raw.name is None:
        raw.name = default_descriptor_name(raw.source)
    return raw
