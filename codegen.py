"""Projection code generator for the Canvas WinRT component.

Generates IDL, header and source files for the projection layer from the
declarative API descriptions under apiref/, the Settings.xml override
document and the per-effect descriptor XML files.

Usage:
    python tools/codegen/codegen.py --input-dir tools/codegen/exe
"""

import os
import argparse
import math
import re
import shutil
import tempfile
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from functools import partial
from enum import Enum as PyEnum
from itertools import groupby
from pathlib import Path
from collections.abc import Callable, Iterable, Iterator

INPUT_DIR_CANDIDATES = (".", "codegen/exe", "tools/codegen/exe")
SETTINGS_FILENAME = "Settings.xml"
EFFECTS_SUBDIR = Path("apiref") / "effects"
NATIVE_EFFECT_HEADERS = (
    Path("Include") / "um" / "d2d1effects.h",
    Path("Include") / "um" / "d2d1_1.h",
)
DEFAULT_SDK_DIR = Path(r"C:\Program Files (x86)\Windows Kits\8.1")


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    input_dir: Path
    output_dir: Path
    effects_output_dir: Path
    native_headers: tuple[Path, ...]
    generate_effects: bool = True


VALID_ERROR_CODES = {
    "INPUT_DIR_NOT_FOUND",
    "PATH_NOT_FOUND",
    "MISSING_SDK",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


class ModelError(Exception):
    """Input documents and overrides disagree about the type model.

    Raised for unresolved qualified names, invalid struct inheritance and
    overrides that name something absent from the inputs. Never recovered
    from: the inputs must be fixed and the run repeated.
    """


def is_input_directory(directory: Path) -> bool:
    return (directory / SETTINGS_FILENAME).is_file()


def find_input_directory(cwd: Path | None = None) -> Path:
    base = Path.cwd() if cwd is None else cwd
    for candidate in INPUT_DIR_CANDIDATES:
        normalized = (base / candidate).resolve()
        if is_input_directory(normalized):
            return normalized
    raise ConfigError(
        "INPUT_DIR_NOT_FOUND",
        f"Couldn't find the codegen source directory under {base}",
        "Pass --input-dir pointing at the directory that contains Settings.xml.",
    )


def default_output_dir(input_dir: Path) -> Path:
    return (input_dir / ".." / ".." / ".." / "winrt" / "lib").resolve()


def default_effects_output_dir(input_dir: Path) -> Path:
    return (default_output_dir(input_dir) / "effects" / "generated").resolve()


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate projection IDL/C++ sources from the API descriptions"
    )
    parser.add_argument("--input-dir", type=Path, default=None)
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("--effects-output-dir", type=Path, default=None)
    parser.add_argument("--sdk-dir", type=Path, default=None)
    parser.add_argument("--native-header", type=Path, action="append", default=None)
    parser.add_argument("--no-effects", action="store_true", default=False)
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def resolve_sdk_dir(raw: Path | None) -> Path:
    """Locate the Windows SDK used to mine native effect enums.

    Order: --sdk-dir, then %WindowsSdkDir%, then the default 8.1 kit path.
    """
    if raw is not None:
        return validate_path_exists(raw, "--sdk-dir")
    env_value = os.environ.get("WindowsSdkDir")
    if env_value and Path(env_value).is_dir():
        return Path(env_value)
    if DEFAULT_SDK_DIR.is_dir():
        return DEFAULT_SDK_DIR
    raise ConfigError(
        "MISSING_SDK",
        "Missing WindowsSdkDir environment variable.",
        "Run from a developer command prompt, or pass --sdk-dir / --native-header.",
    )


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    if args.input_dir is None:
        input_dir = find_input_directory()
    else:
        input_dir = validate_path_exists(args.input_dir, "--input-dir")
        if not is_input_directory(input_dir):
            raise ConfigError(
                "INPUT_DIR_NOT_FOUND",
                f"{input_dir} does not contain {SETTINGS_FILENAME}",
                "Pass --input-dir pointing at the directory that contains Settings.xml.",
            )

    output_dir = args.output_dir or default_output_dir(input_dir)
    effects_output_dir = args.effects_output_dir or default_effects_output_dir(
        input_dir
    )

    native_headers: tuple[Path, ...] = ()
    if not args.no_effects:
        if args.native_header:
            headers = args.native_header
        else:
            sdk_dir = resolve_sdk_dir(args.sdk_dir)
            headers = [sdk_dir / rel for rel in NATIVE_EFFECT_HEADERS]
        native_headers = tuple(
            validate_path_exists(
                header,
                "--native-header",
                "Install the Windows SDK or pass the effect headers explicitly.",
            )
            for header in headers
        )

    return GenerateConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        effects_output_dir=effects_output_dir,
        native_headers=native_headers,
        generate_effects=not args.no_effects,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Formatting ---=== #

INDENT_UNIT = "    "


class Formatter:
    """Indentation-aware text sink. One indent level is four spaces.

    Used as a context manager over a destination path. Text is buffered and
    written to the destination only when the block exits without an
    exception, so a generation error part way through a file never leaves a
    half-written file behind. Without a path the buffered text is available
    through `text`.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._chunks: list[str] = []
        self._indent = ""
        self._closed = False

    def __enter__(self) -> "Formatter":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None and self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(self.text, encoding="utf-8", newline="\n")
        finally:
            self._closed = True
        return False

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def indent_level(self) -> int:
        return len(self._indent) // len(INDENT_UNIT)

    def _append(self, s: str) -> None:
        if self._closed:
            raise ValueError("write to a closed Formatter")
        self._chunks.append(s)

    def indent(self) -> None:
        self._indent += INDENT_UNIT

    def unindent(self) -> None:
        if not self._indent:
            raise ValueError("unindent below column zero")
        self._indent = self._indent[: -len(INDENT_UNIT)]

    def write(self, s: str) -> None:
        self._append(s)

    def write_indent(self) -> None:
        self._append(self._indent)

    def write_line(self, line: str | None = None) -> None:
        # Blank lines carry no indentation.
        if not line:
            self._append("\n")
        else:
            self._append(self._indent + line + "\n")

    def write_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.write_line(line)


def capitalize_leading(name: str | None) -> str | None:
    if name is None:
        return None
    if not name:
        return ""
    return name[0].upper() + name[1:]


def stylize_from_underscores(name: str | None) -> str | None:
    """ARC_SIZE -> ArcSize, MATRIX_3X2_F -> Matrix3x2F.

    Word boundaries come only from underscores: CATDOG -> Catdog.
    """
    if name is None:
        return None
    return "".join(
        token[0].upper() + token[1:].lower() for token in name.split("_") if token
    )


# ===--- Name-based identifiers ---=== #

UUID_NAMESPACE = uuid.UUID("9e5bfcdc-2b5e-4b0b-8a3a-1f1c5c3d7a21")


def derive_uuid(namespace: uuid.UUID, name: str) -> uuid.UUID:
    """Derive a stable version-5 identifier for `name` within `namespace`.

    SHA-1 over the namespace bytes in network order followed by the UTF-8
    name; the first 16 digest bytes with the version and variant fields
    overwritten. UUID.bytes is already big-endian, so no byte swapping is
    needed on either side of the hash.
    """
    return uuid.uuid5(namespace, name)


def format_uuid(value: uuid.UUID) -> str:
    return str(value).upper()


def uuid_for_name(name: str) -> str:
    return format_uuid(derive_uuid(UUID_NAMESPACE, name))


# ===--- Override document (Settings.xml) ---=== #

EFFECTS_NAMESPACE = "Effects"


def _bool_attr(el: ET.Element, name: str, default: bool) -> bool:
    raw = el.get(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _value_child(root: ET.Element, tag: str, default: str | None = None) -> str | None:
    el = root.find(tag)
    if el is None:
        return default
    return el.get("Value", default)


@dataclass(frozen=True)
class PrimitiveOverride:
    name: str
    projected_name_override: str | None = None


@dataclass(frozen=True)
class EnumValueOverride:
    name: str
    index: str | None = None
    should_project: bool = True
    projected_name_override: str | None = None
    projected_value_override: str | None = None


@dataclass(frozen=True)
class EnumOverride:
    name: str
    should_project: bool = True
    projected_name_override: str | None = None
    namespace: str | None = None
    values: tuple[EnumValueOverride, ...] = ()

    def find_value(self, name: str) -> EnumValueOverride | None:
        for value in self.values:
            if value.name == name:
                return value
        return None


@dataclass(frozen=True)
class StructOverride:
    name: str
    should_project: bool = False
    guid: str | None = None
    projected_name_override: str | None = None
    idl_namespace_qualifier: str | None = None


@dataclass(frozen=True)
class InterfaceOverride:
    name: str
    should_project: bool = False
    is_projected_as_abstract: bool = False
    guid: str | None = None
    projected_name_override: str | None = None


@dataclass(frozen=True)
class EffectInputOverride:
    index: int
    name: str


@dataclass(frozen=True)
class EffectPropertyOverride:
    name: str
    projected_name_override: str | None = None
    default_value_override: str | None = None
    is_hidden: bool = False
    is_hand_coded: bool = False
    convert_radians_to_degrees: bool = False


@dataclass(frozen=True)
class EffectOverride:
    """Per-effect projection settings, keyed by the effect's display name.

    Only effects that have one of these are emitted. win_ver gates the
    effect behind a platform version check; is_supported_check names a
    native function backing the statics IsSupported property; static_methods
    are IDL snippets copied into the statics interface verbatim.
    """

    name: str
    projected_name_override: str | None = None
    win_ver: str | None = None
    is_supported_check: str | None = None
    uuid: str | None = None
    inputs: tuple[EffectInputOverride, ...] = ()
    properties: tuple[EffectPropertyOverride, ...] = ()
    static_methods: tuple[str, ...] = ()


@dataclass(frozen=True)
class NamespaceOverride:
    name: str
    name_override: str | None = None
    structs: dict[str, StructOverride] = field(default_factory=dict)
    enums: dict[str, EnumOverride] = field(default_factory=dict)
    interfaces: dict[str, InterfaceOverride] = field(default_factory=dict)
    effects: dict[str, EffectOverride] = field(default_factory=dict)


@dataclass(frozen=True)
class Settings:
    """Parsed, read-only override index. Builders look entries up by name."""

    prefix: str
    filename_base: str
    root_namespace: str
    copyright: str | None = None
    type_documents: tuple[str, ...] = ()
    primitives: dict[str, PrimitiveOverride] = field(default_factory=dict)
    structs: dict[str, StructOverride] = field(default_factory=dict)
    namespaces: dict[str, NamespaceOverride] = field(default_factory=dict)

    def namespace(self, name: str) -> NamespaceOverride | None:
        return self.namespaces.get(name)

    @property
    def effects(self) -> NamespaceOverride:
        return self.namespaces.get(EFFECTS_NAMESPACE) or NamespaceOverride(
            EFFECTS_NAMESPACE
        )

    @property
    def effects_namespace(self) -> str:
        return f"{self.root_namespace}.{EFFECTS_NAMESPACE}"


def _copyright_text(root: ET.Element) -> str | None:
    el = root.find("Copyright")
    if el is None:
        return None
    if el.get("Value") is not None:
        return el.get("Value")
    lines = [line.strip() for line in (el.text or "").strip().splitlines()]
    return "\n".join(lines) or None


def _index_by_name(items, kind: str) -> dict:
    indexed = {}
    for item in items:
        if item.name in indexed:
            raise ModelError(f"Duplicate {kind} override: {item.name}")
        indexed[item.name] = item
    return indexed


def parse_struct_override(el: ET.Element) -> StructOverride:
    return StructOverride(
        name=el.get("Name", ""),
        should_project=_bool_attr(el, "ShouldProject", False),
        guid=el.get("Guid"),
        projected_name_override=el.get("ProjectedNameOverride"),
        idl_namespace_qualifier=el.get("IdlNamespaceQualifier"),
    )


def parse_enum_override(el: ET.Element) -> EnumOverride:
    values = tuple(
        EnumValueOverride(
            name=v.get("Name", ""),
            index=v.get("Index"),
            should_project=_bool_attr(v, "ShouldProject", True),
            projected_name_override=v.get("ProjectedNameOverride"),
            projected_value_override=v.get("ProjectedValueOverride"),
        )
        for v in el.findall("Field")
    )
    return EnumOverride(
        name=el.get("Name", ""),
        should_project=_bool_attr(el, "ShouldProject", True),
        projected_name_override=el.get("ProjectedNameOverride"),
        namespace=el.get("Namespace"),
        values=values,
    )


def parse_interface_override(el: ET.Element) -> InterfaceOverride:
    return InterfaceOverride(
        name=el.get("Name", ""),
        should_project=_bool_attr(el, "ShouldProject", False),
        is_projected_as_abstract=_bool_attr(el, "IsProjectedAsAbstract", False),
        guid=el.get("Guid"),
        projected_name_override=el.get("ProjectedNameOverride"),
    )


def parse_effect_override(el: ET.Element) -> EffectOverride:
    inputs = tuple(
        EffectInputOverride(index=int(i.get("Index", "0")), name=i.get("Name", ""))
        for i in el.findall("Input")
    )
    properties = tuple(
        EffectPropertyOverride(
            name=p.get("Name", ""),
            projected_name_override=p.get("ProjectedNameOverride"),
            default_value_override=p.get("DefaultValueOverride"),
            is_hidden=_bool_attr(p, "IsHidden", False),
            is_hand_coded=_bool_attr(p, "IsHandCoded", False),
            convert_radians_to_degrees=_bool_attr(p, "ConvertRadiansToDegrees", False),
        )
        for p in el.findall("Property")
    )
    static_methods = tuple(
        (s.text or "").strip() for s in el.findall("Static") if (s.text or "").strip()
    )
    return EffectOverride(
        name=el.get("Name", ""),
        projected_name_override=el.get("ProjectedNameOverride"),
        win_ver=el.get("WinVer"),
        is_supported_check=el.get("IsSupportedCheck"),
        uuid=el.get("Uuid"),
        inputs=inputs,
        properties=properties,
        static_methods=static_methods,
    )


def parse_namespace_override(el: ET.Element) -> NamespaceOverride:
    return NamespaceOverride(
        name=el.get("Name", ""),
        name_override=el.get("NameOverride"),
        structs=_index_by_name(map(parse_struct_override, el.findall("Struct")), "struct"),
        enums=_index_by_name(map(parse_enum_override, el.findall("Enum")), "enum"),
        interfaces=_index_by_name(
            map(parse_interface_override, el.findall("Interface")), "interface"
        ),
        effects=_index_by_name(map(parse_effect_override, el.findall("Effect")), "effect"),
    )


def parse_settings(root: ET.Element) -> Settings:
    primitives = (
        PrimitiveOverride(
            name=p.get("Name", ""),
            projected_name_override=p.get("ProjectedNameOverride"),
        )
        for p in root.findall("Primitive")
    )
    return Settings(
        prefix=_value_child(root, "Prefix", "") or "",
        filename_base=_value_child(root, "FilenameBase", "Canvas") or "Canvas",
        root_namespace=_value_child(root, "RootNamespace", "Microsoft.Graphics.Canvas")
        or "Microsoft.Graphics.Canvas",
        copyright=_copyright_text(root),
        type_documents=tuple(
            d.get("Path", "") for d in root.findall("TypeDocument") if d.get("Path")
        ),
        primitives=_index_by_name(primitives, "primitive"),
        structs=_index_by_name(map(parse_struct_override, root.findall("Struct")), "struct"),
        namespaces=_index_by_name(
            map(parse_namespace_override, root.findall("Namespace")), "namespace"
        ),
    )


def load_settings(input_dir: Path) -> Settings:
    path = input_dir / SETTINGS_FILENAME
    print(f"Parsing: {path}")
    return parse_settings(ET.parse(path).getroot())


# ===--- Type model ---=== #


class QualifiableType:
    """A type that struct fields, method parameters and parents can refer to.

    Subclasses override the naming properties that differ from the plain
    projected name. sort_order orders kinds within a namespace on output.
    """

    sort_order = 0

    def __init__(self, native_name: str, projected_name: str, namespace=None):
        self.native_name = native_name
        self.projected_name = projected_name
        self.namespace = namespace

    @property
    def projected_name_with_indirection(self) -> str:
        return self.projected_name

    @property
    def accessor_suffix(self) -> str:
        return ""

    @property
    def runtime_member_type_name(self) -> str:
        return self.projected_name_with_indirection

    @property
    def idl_type_name_qualifier(self) -> str:
        return ""

    @property
    def projected_namespace(self) -> str | None:
        return None if self.namespace is None else self.namespace.projected_name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.native_name!r} -> {self.projected_name!r})"


class Primitive(QualifiableType):
    pass


class EnumValue:
    def __init__(
        self,
        raw_name_component: str,
        native_name: str,
        stylized_name: str,
        value_expression: str,
        should_project: bool = True,
    ):
        self.raw_name_component = raw_name_component
        self.native_name = native_name
        self.stylized_name = stylized_name
        self.value_expression = value_expression
        self.should_project = should_project


class Enum(QualifiableType):
    sort_order = 0

    def __init__(
        self,
        raw_name: str,
        native_name: str,
        stylized_name: str,
        is_flags: bool,
        values: list[EnumValue],
        namespace=None,
    ):
        super().__init__(native_name, stylized_name, namespace)
        self.raw_name = raw_name
        self.is_flags = is_flags
        self.values = values

    @property
    def stylized_name(self) -> str:
        return self.projected_name

    @property
    def projected_values(self) -> list[EnumValue]:
        return [v for v in self.values if v.should_project]


class StructField:
    def __init__(self, name: str, type_name: str):
        # Projected classes keep one private member per field.
        if name.startswith("_"):
            self.private_name = "m" + name
        else:
            self.private_name = "m_" + name
        self.property_name = capitalize_leading(name)
        self.type_name = type_name


class Struct(QualifiableType):
    sort_order = 1

    def __init__(
        self,
        raw_name: str,
        native_name: str,
        stylized_name: str,
        fields: list[StructField],
        extends: str | None = None,
        namespace=None,
        override: StructOverride | None = None,
    ):
        super().__init__(native_name, stylized_name, namespace)
        self.raw_name = raw_name
        self.fields = fields
        self.extends = extends
        self.override = override

    @property
    def stylized_name(self) -> str:
        return self.projected_name

    @property
    def idl_interface_name(self) -> str:
        return "I" + self.projected_name

    @property
    def idl_type_name_qualifier(self) -> str:
        if self.override is None or self.override.idl_namespace_qualifier is None:
            return ""
        return self.override.idl_namespace_qualifier

    def requires_class_projection(self, types: "TypeDictionary") -> bool:
        # Only valid once every document has been loaded: field types may be
        # declared after the struct itself.
        return any(
            isinstance(types.resolve(f.type_name), Interface) for f in self.fields
        )


class Parameter:
    def __init__(self, name: str, native_type_name: str, form: str = "in", is_array: bool = False):
        self.name = name
        self.native_type_name = native_type_name
        self.form = form
        self.is_array = is_array


class Method:
    def __init__(
        self,
        name: str,
        native_return_type: str,
        is_const: bool = False,
        is_overload: bool = False,
        parameters: list[Parameter] | None = None,
    ):
        self.name = name
        self.native_return_type = native_return_type
        self.is_const = is_const
        self.is_overload = is_overload
        self.parameters = parameters or []

    @property
    def is_getter(self) -> bool:
        return (
            self.is_const
            and not self.parameters
            and self.native_return_type != "void"
            and self.name.startswith("Get")
            and len(self.name) > 3
        )


class Interface(QualifiableType):
    sort_order = 2

    def __init__(
        self,
        native_name: str,
        stylized_name: str,
        extends: str | None,
        methods: list[Method],
        namespace=None,
        override: InterfaceOverride | None = None,
    ):
        super().__init__(native_name, stylized_name, namespace)
        self.inner_name = "I" + stylized_name
        self.extends = extends
        self.methods = methods
        self.override = override

    @property
    def stylized_name(self) -> str:
        return self.projected_name

    @property
    def projected_name_with_indirection(self) -> str:
        return self.inner_name + "*"

    @property
    def accessor_suffix(self) -> str:
        return ".Get()"

    @property
    def runtime_member_type_name(self) -> str:
        return f"ComPtr<{self.inner_name}>"


class TypeDictionary:
    """Qualified native name -> QualifiableType.

    Namespaced types are keyed "Namespace::Name", global types by their bare
    name. find() reports a miss as None; resolve() treats it as fatal.
    """

    def __init__(self):
        self._types: dict[str, QualifiableType] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._types

    def __len__(self) -> int:
        return len(self._types)

    def register(self, key: str, value: QualifiableType) -> None:
        self._types[key] = value

    def find(self, key: str) -> QualifiableType | None:
        return self._types.get(key)

    def resolve(self, key: str) -> QualifiableType:
        found = self._types.get(key)
        if found is None:
            raise ModelError(f"Unresolved type: {key}")
        return found


class Namespace:
    def __init__(self, name: str, api_name: str, projected_name: str):
        self.name = name
        self.api_name = api_name
        self.projected_name = projected_name

    def qualify(self, name: str) -> str:
        return f"{self.name}::{name}"


class OutputDataTypes:
    """Ordered list of namespaced types selected for emission."""

    def __init__(self):
        self.enums: list[Enum] = []
        self.structs: list[Struct] = []
        self.interfaces: list[Interface] = []

    def add(self, t: QualifiableType) -> None:
        if isinstance(t, Enum):
            self.enums.append(t)
        elif isinstance(t, Struct):
            self.structs.append(t)
        elif isinstance(t, Interface):
            self.interfaces.append(t)
        else:
            raise TypeError(f"not an outputtable type: {t!r}")

    def __len__(self) -> int:
        return len(self.enums) + len(self.structs) + len(self.interfaces)

    def sorted_entries(self) -> list[QualifiableType]:
        return sorted(
            [*self.enums, *self.structs, *self.interfaces],
            key=lambda t: (t.projected_namespace or "", t.sort_order, t.projected_name),
        )


class TypeModel:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.types = TypeDictionary()
        self.output = OutputDataTypes()
        self.namespaces: dict[str, Namespace] = {}


# ===--- Enum, struct and interface builders ---=== #


def _required_attr(el: ET.Element, name: str) -> str:
    value = el.get(name)
    if value is None:
        raise ModelError(f"<{el.tag}> is missing the {name} attribute")
    return value


def build_primitive(el: ET.Element, model: TypeModel) -> Primitive:
    name = _required_attr(el, "Name")
    projected = el.get("ProjectedName", name)
    override = model.settings.primitives.get(name)
    if override is not None and override.projected_name_override is not None:
        projected = override.projected_name_override
    primitive = Primitive(name, projected)
    model.types.register(name, primitive)
    return primitive


def _evaluate_flag_value(expression: str, siblings: dict[str, str], seen=()) -> int:
    total = 0
    for term in expression.split("|"):
        term = term.strip().strip("()").strip()
        try:
            total |= int(term, 0)
            continue
        except ValueError:
            pass
        if term in siblings and term not in seen:
            total |= _evaluate_flag_value(siblings[term], siblings, (*seen, term))
            continue
        raise ModelError(f"Cannot evaluate flags value: {expression}")
    return total


def sort_flag_values(values: list[EnumValue]) -> list[EnumValue]:
    """Order flag values numerically. Symbolic values may name siblings."""
    siblings = {}
    for v in values:
        siblings[v.native_name] = v.value_expression
        siblings[v.raw_name_component] = v.value_expression
    return sorted(values, key=lambda v: _evaluate_flag_value(v.value_expression, siblings))


def build_enum(
    el: ET.Element,
    model: TypeModel,
    namespace: Namespace | None = None,
    override: EnumOverride | None = None,
) -> Enum:
    raw_name = _required_attr(el, "Name")
    prefix = model.settings.prefix
    if namespace is None:
        native_name = raw_name
        key = raw_name
    else:
        native_name = f"{namespace.api_name}_{raw_name}"
        key = namespace.qualify(raw_name)

    stylized_name = prefix + stylize_from_underscores(raw_name)
    if override is not None and override.projected_name_override is not None:
        stylized_name = prefix + override.projected_name_override

    values = []
    for field_el in el.findall("Field"):
        component = _required_attr(field_el, "Name")
        # NumericalValue is always an int literal; Value may be a symbol.
        expression = field_el.get("NumericalValue") or field_el.get("Value")
        if expression is None:
            raise ModelError(f"Enum value {native_name}_{component} has no value")
        value = EnumValue(
            component,
            f"{native_name}_{component}",
            stylize_from_underscores(component),
            expression,
        )
        value_override = override.find_value(component) if override else None
        if value_override is not None:
            if value_override.projected_name_override is not None:
                value.stylized_name = value_override.projected_name_override
            if value_override.projected_value_override is not None:
                value.value_expression = value_override.projected_value_override
            value.should_project = value_override.should_project
        values.append(value)

    is_flags = _bool_attr(el, "IsFlags", False)
    if is_flags:
        values = sort_flag_values(values)

    enum = Enum(raw_name, native_name, stylized_name, is_flags, values, namespace)
    model.types.register(key, enum)

    # Global enums are aliases only.
    if namespace is not None and override is not None and override.should_project:
        model.output.add(enum)
    return enum


def build_struct(
    el: ET.Element,
    model: TypeModel,
    namespace: Namespace | None = None,
    override: StructOverride | None = None,
) -> Struct:
    raw_name = _required_attr(el, "Name")
    prefix = model.settings.prefix
    if namespace is None:
        native_name = raw_name
        key = raw_name
    else:
        native_name = f"{namespace.api_name}_{raw_name}"
        key = namespace.qualify(raw_name)

    stylized_name = prefix + stylize_from_underscores(raw_name)
    if override is not None and override.projected_name_override is not None:
        if override.should_project:
            stylized_name = prefix + override.projected_name_override
        else:
            stylized_name = override.projected_name_override

    field_els = el.findall("Field")
    fields = [
        StructField(_required_attr(f, "Name"), _required_attr(f, "Type"))
        for f in field_els
    ]

    extends = el.get("Extends")
    if extends is not None:
        parent = model.types.resolve(extends)
        if not isinstance(parent, Struct):
            raise ModelError(f"{key} extends {extends}, which is not a struct")
        if parent.extends is not None:
            raise ModelError(
                f"{key} extends {extends}, which itself extends {parent.extends}: "
                "only one level of struct inheritance is supported"
            )
        fields = [*parent.fields, *fields]

    struct = Struct(raw_name, native_name, stylized_name, fields, extends, namespace, override)
    model.types.register(key, struct)

    # Field-less structs are unions and are not projected.
    if (
        namespace is not None
        and field_els
        and override is not None
        and override.should_project
    ):
        model.output.add(struct)
    return struct


def build_interface(
    el: ET.Element,
    model: TypeModel,
    namespace: Namespace | None = None,
    override: InterfaceOverride | None = None,
) -> Interface:
    raw_name = _required_attr(el, "Name")
    if namespace is None:
        native_name = "I" + raw_name
        key = raw_name
    else:
        native_name = f"I{namespace.api_name}{raw_name}"
        key = namespace.qualify(raw_name)

    stylized_name = model.settings.prefix + raw_name
    if override is not None and override.projected_name_override is not None:
        stylized_name = model.settings.prefix + override.projected_name_override

    methods = []
    for m in el.findall("Method"):
        parameters = [
            Parameter(
                _required_attr(p, "Name"),
                _required_attr(p, "Type"),
                p.get("Form", "in").lower(),
                _bool_attr(p, "IsArray", False),
            )
            for p in m.findall("Parameter")
        ]
        methods.append(
            Method(
                _required_attr(m, "Name"),
                m.get("ReturnType", "void"),
                _bool_attr(m, "IsConst", False),
                _bool_attr(m, "IsOverload", False),
                parameters,
            )
        )

    interface = Interface(
        native_name, stylized_name, el.get("Extends"), methods, namespace, override
    )
    model.types.register(key, interface)
    if namespace is not None and override is not None and override.should_project:
        model.output.add(interface)
    return interface


def _namespace_projection(settings: Settings, el: ET.Element) -> str:
    name = el.get("Name", "")
    override = settings.namespace(name)
    name_override = el.get("NameOverride")
    if override is not None and override.name_override is not None:
        name_override = override.name_override
    if name_override:
        return f"{settings.root_namespace}.{name_override}"
    return settings.root_namespace


def build_type_model(settings: Settings, documents: list[ET.Element]) -> TypeModel:
    """Construct every type from the parsed documents, in dependency order.

    Primitives and global enums/structs from all documents come first, so
    that namespaced structs can name them. Namespaces of the same name in
    several documents are merged, keeping first-appearance order; within a
    namespace enums are built before structs, structs before interfaces.
    """
    model = TypeModel(settings)

    for doc in documents:
        for el in doc.findall("Primitive"):
            build_primitive(el, model)
    for doc in documents:
        for el in doc.findall("Enum"):
            build_enum(el, model)
        for el in doc.findall("Struct"):
            build_struct(el, model, override=settings.structs.get(el.get("Name", "")))

    merged: dict[str, list[ET.Element]] = {}
    for doc in documents:
        for ns_el in doc.findall("Namespace"):
            name = _required_attr(ns_el, "Name")
            merged.setdefault(name, []).append(ns_el)

    for name, ns_els in merged.items():
        first = ns_els[0]
        namespace = Namespace(
            name,
            first.get("ApiName", name),
            _namespace_projection(settings, first),
        )
        model.namespaces[name] = namespace
        overrides = settings.namespace(name) or NamespaceOverride(name)

        for ns_el in ns_els:
            for el in ns_el.findall("Enum"):
                build_enum(el, model, namespace, overrides.enums.get(el.get("Name", "")))
        for ns_el in ns_els:
            for el in ns_el.findall("Struct"):
                build_struct(el, model, namespace, overrides.structs.get(el.get("Name", "")))
        for ns_el in ns_els:
            for el in ns_el.findall("Interface"):
                build_interface(
                    el, model, namespace, overrides.interfaces.get(el.get("Name", ""))
                )

    return model


def load_type_documents(input_dir: Path, settings: Settings) -> list[ET.Element]:
    documents = []
    for rel in settings.type_documents:
        path = input_dir / rel
        print(f"Parsing: {path}")
        documents.append(ET.parse(path).getroot())
    return documents


# ===--- Shared emission helpers ---=== #

GENERATED_NOTICE = "// This file was automatically generated. Please do not edit it manually."


def write_leading_comment(out: Formatter, copyright: str | None) -> None:
    if copyright:
        for line in copyright.splitlines():
            out.write_line(f"// {line}" if line else "//")
        out.write_line()
    out.write_line(GENERATED_NOTICE)
    out.write_line()


def cpp_namespace_open(projected_namespace: str) -> str:
    parts = ["ABI", *projected_namespace.split(".")]
    return " { ".join(f"namespace {part}" for part in parts)


def cpp_namespace_close(projected_namespace: str) -> str:
    return "}" * (len(projected_namespace.split(".")) + 1)


def win_ver_macro(win_ver: str) -> str:
    return "_WIN32_WINNT_" + win_ver.upper()


def write_win_ver_begin(out: Formatter, win_ver: str | None) -> None:
    # Preprocessor lines stay in column zero whatever the indent.
    if win_ver:
        macro = win_ver_macro(win_ver)
        out.write(f"#if (defined {macro}) && (WINVER >= {macro})\n")
        out.write_line()


def write_win_ver_end(out: Formatter, win_ver: str | None) -> None:
    if win_ver:
        out.write_line()
        out.write(f"#endif // {win_ver_macro(win_ver)}\n")


def qualified_idl_name(t: QualifiableType) -> str:
    return t.idl_type_name_qualifier + t.projected_name_with_indirection


# ===--- Data type emission ---=== #


def write_enum_idl(out: Formatter, enum: Enum) -> None:
    out.write_line("[version(VERSION), flags]" if enum.is_flags else "[version(VERSION)]")
    out.write_line(f"typedef enum {enum.projected_name}")
    out.write_line("{")
    out.indent()
    values = enum.projected_values
    for i, value in enumerate(values):
        # (int) keeps values like 0x80000000 from overflowing MIDL's signed enums.
        cast = "" if enum.is_flags else "(int)"
        suffix = "," if i < len(values) - 1 else ""
        out.write_line(f"{value.stylized_name} = {cast}{value.value_expression}{suffix}")
    out.unindent()
    out.write_line(f"}} {enum.projected_name};")


def write_struct_value_idl(out: Formatter, struct: Struct, types: TypeDictionary) -> None:
    out.write_line("[version(VERSION)]")
    out.write_line(f"typedef struct {struct.projected_name}")
    out.write_line("{")
    out.indent()
    for f in struct.fields:
        field_type = types.resolve(f.type_name)
        out.write_line(
            f"{field_type.idl_type_name_qualifier}{field_type.projected_name} {f.property_name};"
        )
    out.unindent()
    out.write_line(f"}} {struct.projected_name};")


def struct_guid(struct: Struct) -> str:
    if struct.override is not None and struct.override.guid is not None:
        return struct.override.guid
    return uuid_for_name(f"{struct.projected_namespace}.{struct.idl_interface_name}")


def write_struct_class_idl(out: Formatter, struct: Struct, types: TypeDictionary) -> None:
    name = struct.projected_name
    interface = struct.idl_interface_name
    out.write_line(f"interface {interface};")
    out.write_line(f"runtimeclass {name};")
    out.write_line()
    out.write_line(f"[uuid({struct_guid(struct)}), version(VERSION), exclusiveto({name})]")
    out.write_line(f"interface {interface} : IInspectable")
    out.write_line("{")
    out.indent()
    for i, f in enumerate(struct.fields):
        type_name = qualified_idl_name(types.resolve(f.type_name))
        out.write_line(f"[propget] HRESULT {f.property_name}([out, retval] {type_name}* value);")
        out.write_line(f"[propput] HRESULT {f.property_name}([in] {type_name} value);")
        if i < len(struct.fields) - 1:
            out.write_line()
    out.unindent()
    out.write_line("}")
    out.write_line()
    out.write_line("[version(VERSION), activatable(VERSION)]")
    out.write_line(f"runtimeclass {name}")
    out.write_line("{")
    out.indent()
    out.write_line(f"[default] interface {interface};")
    out.unindent()
    out.write_line("}")


def write_struct_class_cpp(out: Formatter, struct: Struct, types: TypeDictionary) -> None:
    name = struct.projected_name
    out.write_line(
        f"class {name} : public Microsoft::WRL::RuntimeClass<{struct.idl_interface_name}>"
    )
    out.write_line("{")
    out.indent()
    out.write_line(f'InspectableClass(L"{struct.projected_namespace}.{name}", BaseTrust);')
    out.write_line()
    out.unindent()

    out.write_line("public:")
    out.indent()
    for f in struct.fields:
        field_type = types.resolve(f.type_name)
        type_name = field_type.projected_name_with_indirection
        out.write_line(f"IFACEMETHOD(get_{f.property_name})(_Out_ {type_name} *pValue) override")
        out.write_line("{")
        out.indent()
        out.write_line("if (pValue == nullptr)")
        out.write_line("{")
        out.indent()
        out.write_line("return E_POINTER;")
        out.unindent()
        out.write_line("}")
        out.write_line("else")
        out.write_line("{")
        out.indent()
        out.write_line(f"*pValue = {f.private_name}{field_type.accessor_suffix};")
        out.write_line("return S_OK;")
        out.unindent()
        out.write_line("}")
        out.unindent()
        out.write_line("}")
        out.write_line()
        out.write_line(f"IFACEMETHOD(put_{f.property_name})({type_name} value) override")
        out.write_line("{")
        out.indent()
        out.write_line(f"{f.private_name} = value;")
        out.write_line("return S_OK;")
        out.unindent()
        out.write_line("}")
        out.write_line()
    out.unindent()

    out.write_line("private:")
    out.indent()
    for f in struct.fields:
        field_type = types.resolve(f.type_name)
        out.write_line(f"{field_type.runtime_member_type_name} {f.private_name};")
    out.unindent()
    out.write_line("};")


def interface_guid(interface: Interface) -> str:
    if interface.override is not None and interface.override.guid is not None:
        return interface.override.guid
    return uuid_for_name(f"{interface.projected_namespace}.{interface.inner_name}")


def format_method_parameters(method: Method, types: TypeDictionary) -> list[str]:
    params = []
    for p in method.parameters:
        type_name = qualified_idl_name(types.resolve(p.native_type_name))
        if p.form == "out":
            if p.is_array:
                params.append(f"[out] UINT32* {p.name}Count")
                params.append(f"[out, size_is(, *{p.name}Count)] {type_name}** {p.name}")
            else:
                params.append(f"[out] {type_name}* {p.name}")
        elif p.is_array:
            params.append(f"[in] UINT32 {p.name}Count")
            params.append(f"[in, size_is({p.name}Count)] {type_name}* {p.name}")
        else:
            params.append(f"[in] {type_name} {p.name}")
    if method.native_return_type != "void":
        return_type = qualified_idl_name(types.resolve(method.native_return_type))
        params.append(f"[out, retval] {return_type}* value")
    return params


def write_interface_idl(out: Formatter, interface: Interface, types: TypeDictionary) -> None:
    out.write_line(f"[version(VERSION), uuid({interface_guid(interface)})]")
    out.write_line(f"interface {interface.inner_name} : IInspectable")
    if interface.extends is not None:
        parent = types.resolve(interface.extends)
        if not isinstance(parent, Interface):
            raise ModelError(
                f"{interface.native_name} requires {interface.extends}, which is not an interface"
            )
        out.indent()
        out.write_line(f"requires {parent.idl_type_name_qualifier}{parent.inner_name}")
        out.unindent()
    out.write_line("{")
    out.indent()

    seen: dict[str, int] = {}
    for method in interface.methods:
        params = ", ".join(format_method_parameters(method, types))
        if method.is_getter:
            out.write_line(f"[propget] HRESULT {method.name[3:]}({params});")
            continue
        seen[method.name] = seen.get(method.name, 0) + 1
        idl_name = method.name
        if seen[method.name] > 1:
            idl_name = f"{method.name}{seen[method.name]}"
        if method.is_overload:
            out.write_line(f'[overload("{method.name}")]')
        out.write_line(f"HRESULT {idl_name}({params});")

    out.unindent()
    out.write_line("}")

    is_abstract = interface.override is not None and interface.override.is_projected_as_abstract
    if not is_abstract:
        out.write_line()
        out.write_line("[version(VERSION)]")
        out.write_line(f"runtimeclass {interface.projected_name}")
        out.write_line("{")
        out.indent()
        out.write_line(f"[default] interface {interface.inner_name};")
        out.unindent()
        out.write_line("}")


def write_data_types_idl(out: Formatter, model: TypeModel) -> None:
    """Enums, structs and interfaces, one namespace block per contiguous run."""
    write_leading_comment(out, model.settings.copyright)
    entries = model.output.sorted_entries()
    runs = groupby(entries, key=lambda t: t.projected_namespace)
    for run_index, (namespace, group) in enumerate(runs):
        if run_index:
            out.write_line()
        out.write_line(f"namespace {namespace}")
        out.write_line("{")
        out.indent()
        for i, t in enumerate(group):
            if i:
                out.write_line()
            if isinstance(t, Enum):
                write_enum_idl(out, t)
            elif isinstance(t, Struct) and t.requires_class_projection(model.types):
                write_struct_class_idl(out, t, model.types)
            elif isinstance(t, Struct):
                write_struct_value_idl(out, t, model.types)
            else:
                write_interface_idl(out, t, model.types)
        out.unindent()
        out.write_line("}")


def write_data_types_cpp(out: Formatter, model: TypeModel) -> None:
    write_leading_comment(out, model.settings.copyright)
    out.write_line('#include "pch.h"')
    out.write_line("#include <wrl.h>")
    out.write_line("using namespace Microsoft::WRL;")

    class_structs = [
        s for s in model.output.sorted_entries()
        if isinstance(s, Struct) and s.requires_class_projection(model.types)
    ]
    for namespace, group in groupby(class_structs, key=lambda t: t.projected_namespace):
        out.write_line()
        out.write_line(cpp_namespace_open(namespace))
        out.write_line("{")
        out.indent()
        for i, struct in enumerate(group):
            if i:
                out.write_line()
            write_struct_class_cpp(out, struct, model.types)
        out.unindent()
        out.write_line(cpp_namespace_close(namespace))


# ===--- Effect descriptors ---=== #

VARIABLE_INPUTS_MAXIMUM = "0xFFFFFFFF"


class PropertyKind(PyEnum):
    STRING = "string"
    BOOL = "bool"
    INT32 = "int32"
    UINT32 = "uint32"
    FLOAT = "float"
    VECTOR = "vector"
    MATRIX = "matrix"
    BLOB = "blob"
    ENUM = "enum"
    OTHER = "other"


_VECTOR_TAG = re.compile(r"^vector(\d+)$")
_MATRIX_TAG = re.compile(r"^matrix(\d+)x(\d+)$")


@dataclass(frozen=True)
class PropertyType:
    """An effect property type tag, parsed once.

    Attributes:
        kind: Closed set of tags the generator distinguishes.
        raw: Tag as written in the descriptor, e.g. "matrix3x2".
        dimensions: (N,) for vectorN, (N, M) for matrixNxM, else empty.
    """

    kind: PropertyKind
    raw: str
    dimensions: tuple[int, ...] = ()

    @property
    def element_count(self) -> int:
        return math.prod(self.dimensions) if self.dimensions else 1

    @property
    def alias_name(self) -> str:
        """Vector3, Matrix3x2: the Numerics type name for vector/matrix tags."""
        return capitalize_leading(self.raw)


def parse_property_type(tag: str) -> PropertyType:
    match = _VECTOR_TAG.match(tag)
    if match:
        return PropertyType(PropertyKind.VECTOR, tag, (int(match.group(1)),))
    match = _MATRIX_TAG.match(tag)
    if match:
        return PropertyType(
            PropertyKind.MATRIX, tag, (int(match.group(1)), int(match.group(2)))
        )
    for kind in PropertyKind:
        if kind.value == tag and kind not in (PropertyKind.VECTOR, PropertyKind.MATRIX):
            return PropertyType(kind, tag)
    return PropertyType(PropertyKind.OTHER, tag)


class EnumField:
    def __init__(self, name: str, display_name: str, index: str | None = None):
        self.name = name
        self.display_name = display_name
        self.index = index


class EnumUsage(PyEnum):
    USED_BY_ONE_EFFECT = "UsedByOneEffect"
    USED_BY_MULTIPLE_EFFECTS = "UsedByMultipleEffects"


class EnumFields:
    """Enum payload of one effect property.

    Properties found to describe the same value set share one representative.
    Members share the representative's `fields` list object; `own_fields`
    keeps the values this property declared itself, which is what native
    matching and excluded indexes are computed from.
    """

    def __init__(self, fields: list[EnumField], owner_name: str):
        self.fields = fields
        self.own_fields = tuple(fields)
        self.owner_name = owner_name
        self.usage = EnumUsage.USED_BY_ONE_EFFECT
        self.is_representative = False
        self.representative: "EnumFields | None" = None
        self.members: list[EnumFields] = [self]
        self.excluded_indexes: list[int] = []
        self.native_enum: NativeEnum | None = None
        self.effect_name: str | None = None

    @property
    def own_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.own_fields)

    @property
    def root(self) -> "EnumFields":
        return self.representative or self

    @property
    def is_shared(self) -> bool:
        return self.usage is EnumUsage.USED_BY_MULTIPLE_EFFECTS


class EffectProperty:
    def __init__(
        self,
        name: str,
        type_tag: str,
        value: str | None = None,
        properties: list["EffectProperty"] | None = None,
        enum_fields: EnumFields | None = None,
    ):
        self.name = name
        self.xml_name = name
        self.type = parse_property_type(type_tag)
        self.value = value
        self.properties = properties or []
        self.enum_fields = enum_fields
        self.effect_name: str | None = None
        self.type_name_idl: str | None = None
        self.type_name_cpp: str | None = None
        self.type_name_boxed: str | None = None
        self.native_property_name: str | None = None
        self.excluded_enum_indexes: list[int] = []
        self.default_value_override: str | None = None
        self.is_array = False
        self.should_project = True
        self.is_hidden = False
        self.is_hand_coded = False
        self.convert_radians_to_degrees = False

    def nested_value(self, name: str) -> str | None:
        for p in self.properties:
            if p.name == name:
                return p.value
        return None

    @property
    def is_metadata(self) -> bool:
        return self.type.kind is PropertyKind.STRING

    @property
    def default_value(self) -> str | None:
        if self.default_value_override is not None:
            return self.default_value_override
        return self.nested_value("Default")

    @property
    def min_value(self) -> str | None:
        return self.nested_value("Min")

    @property
    def max_value(self) -> str | None:
        return self.nested_value("Max")


class EffectInput:
    def __init__(self, name: str):
        self.name = name


class Effect:
    def __init__(
        self,
        properties: list[EffectProperty],
        inputs: list[EffectInput],
        inputs_minimum: str | None = None,
        inputs_maximum: str | None = None,
        source: Path | None = None,
    ):
        self.properties = properties
        self.inputs = inputs
        self.inputs_minimum = inputs_minimum
        self.inputs_maximum = inputs_maximum
        self.source = source
        self.class_name: str | None = None
        self.interface_name: str | None = None
        self.uuid: str | None = None
        self.override: EffectOverride | None = None

    @property
    def display_name(self) -> str:
        for p in self.properties:
            if p.name == "DisplayName":
                return p.value or ""
        if not self.properties:
            raise ModelError(f"Effect descriptor {self.source} has no properties")
        return self.properties[0].value or ""

    @property
    def has_variable_inputs(self) -> bool:
        return (self.inputs_maximum or "").upper() == VARIABLE_INPUTS_MAXIMUM.upper()

    @property
    def is_enabled(self) -> bool:
        """Only effects with an override entry are emitted."""
        return self.override is not None

    @property
    def value_properties(self) -> list[EffectProperty]:
        return [p for p in self.properties if not p.is_metadata]

    @property
    def projected_properties(self) -> list[EffectProperty]:
        return [p for p in self.value_properties if not p.is_hidden]

    @property
    def win_ver(self) -> str | None:
        return None if self.override is None else self.override.win_ver

    @property
    def has_statics(self) -> bool:
        return self.override is not None and bool(
            self.override.static_methods or self.override.is_supported_check
        )

    def find_property(self, xml_name: str) -> EffectProperty | None:
        for p in self.value_properties:
            if p.xml_name == xml_name:
                return p
        return None


def parse_effect_property(el: ET.Element) -> EffectProperty:
    name = _required_attr(el, "name")
    fields_el = el.find("Fields")
    enum_fields = None
    if fields_el is not None:
        enum_fields = EnumFields(
            [
                EnumField(
                    _required_attr(f, "name"),
                    f.get("displayname", f.get("name", "")),
                    f.get("index"),
                )
                for f in fields_el.findall("Field")
            ],
            name,
        )
    return EffectProperty(
        name,
        el.get("type", ""),
        el.get("value"),
        [parse_effect_property(p) for p in el.findall("Property")],
        enum_fields,
    )


def parse_effect(root: ET.Element, source: Path | None = None) -> Effect:
    inputs_el = root.find("Inputs")
    inputs = []
    minimum = maximum = None
    if inputs_el is not None:
        inputs = [EffectInput(_required_attr(i, "name")) for i in inputs_el.findall("Input")]
        minimum = inputs_el.get("minimum")
        maximum = inputs_el.get("maximum")
        if (
            minimum is not None
            and (maximum or "").upper() != VARIABLE_INPUTS_MAXIMUM.upper()
            and len(inputs) < int(minimum, 0)
        ):
            raise ModelError(
                f"Effect descriptor {source} declares {len(inputs)} inputs,"
                f" fewer than its minimum of {minimum}"
            )
    properties = [parse_effect_property(p) for p in root.findall("Property")]
    for p in properties:
        if p.type.kind is PropertyKind.ENUM and p.enum_fields is None:
            raise ModelError(f"Enum property {p.name} in {source} has no <Fields>")
    return Effect(properties, inputs, minimum, maximum, source)


def load_effects(effects_dir: Path) -> list[Effect]:
    effects = []
    for path in sorted(effects_dir.glob("*.xml")):
        effects.append(parse_effect(ET.parse(path).getroot(), path))
    print(f"Parsing: {effects_dir} ({len(effects)} effect descriptors)")
    return effects


def all_properties(effects: Iterable[Effect]) -> Iterator[EffectProperty]:
    for effect in effects:
        yield from effect.properties


# ===--- Effect naming and overrides ---=== #


def attach_effect_overrides(effects: list[Effect], settings: Settings) -> None:
    overrides = settings.effects.effects
    names = {effect.display_name for effect in effects}
    for name in overrides:
        if name not in names:
            raise ModelError(f"Effect override names an unknown effect: {name}")
    for effect in effects:
        effect.override = overrides.get(effect.display_name)


def assign_effect_names_to_properties(effects: list[Effect]) -> None:
    for effect in effects:
        for p in effect.properties:
            p.effect_name = effect.display_name
            if p.enum_fields is not None:
                p.enum_fields.effect_name = effect.display_name


def effect_class_name(display_name: str) -> str:
    """3D Transform -> Transform3DEffect. C++ names cannot start with a digit."""
    name = display_name.replace(" ", "")
    if name[:2] in ("2D", "3D"):
        name = name[2:] + name[:2]
    return name + "Effect"


def assign_class_names(effects: list[Effect]) -> None:
    for effect in effects:
        if effect.override is not None and effect.override.projected_name_override:
            effect.class_name = effect.override.projected_name_override + "Effect"
        else:
            effect.class_name = effect_class_name(effect.display_name)
        effect.interface_name = "I" + effect.class_name


def native_property_name(effect_name: str, property_name: str) -> str:
    """D2D1_SPOTSPECULAR_PROP_LIGHT_POSITION for ("Spot Specular", "LightPosition")."""
    parts = ["D2D1_", effect_name.replace(" ", "").upper(), "_PROP"]
    for c in property_name:
        if c.isupper():
            parts.append("_")
        parts.append(c.upper())
    return "".join(parts)


# ===--- Cross-effect enum sharing ---=== #


def _merge_enum_groups(a: EnumFields, b: EnumFields) -> None:
    root_a, root_b = a.root, b.root
    if root_a is root_b:
        return
    names_a, names_b = set(root_a.own_names), set(root_b.own_names)
    if names_b <= names_a:
        keep, absorbed = root_a, root_b
    elif names_a <= names_b:
        keep, absorbed = root_b, root_a
    else:
        return

    keep.is_representative = True
    keep.representative = None
    absorbed.is_representative = False
    for member in absorbed.members:
        member.representative = keep
        member.fields = keep.fields
        keep.members.append(member)
    absorbed.members = []

    rep_names = keep.own_names
    for member in keep.members:
        member.usage = EnumUsage.USED_BY_MULTIPLE_EFFECTS
        own = set(member.own_names)
        member.excluded_indexes = [i for i, n in enumerate(rep_names) if n not in own]


def detect_common_enums(effects: list[Effect]) -> None:
    """Merge enum payloads whose value-name sets are subsets of one another.

    The superset side (or the earlier one, on equality) becomes the
    representative; each member records the representative's indexes it does
    not itself support. Payloads already in the same group are left alone,
    so running this again changes nothing. Disjoint sets never merge.
    """
    payloads = [p.enum_fields for p in all_properties(effects) if p.enum_fields is not None]
    for i, a in enumerate(payloads):
        for b in payloads[i + 1:]:
            _merge_enum_groups(a, b)


def assign_property_names(effects: list[Effect]) -> None:
    for effect in effects:
        for p in effect.value_properties:
            if p.type.kind is PropertyKind.ENUM:
                payload = p.enum_fields
                if payload.is_shared:
                    p.type_name_idl = "Effect" + payload.root.owner_name
                else:
                    p.type_name_idl = effect.class_name + p.name
                p.excluded_enum_indexes = list(payload.excluded_indexes)
            p.native_property_name = native_property_name(effect.display_name, p.name)


def resolve_similar_enums(effects: list[Effect]) -> None:
    """Suffix 2D/3D onto distinct shared enums that ended up with one name."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for p in all_properties(effects):
        if p.type.kind is PropertyKind.ENUM and p.enum_fields.is_representative:
            if p.type_name_idl in seen and p.type_name_idl not in duplicates:
                duplicates.append(p.type_name_idl)
            seen.add(p.type_name_idl)
    # Every member takes the suffix of its group, named after the root's effect.
    for name in duplicates:
        for p in all_properties(effects):
            if p.type.kind is PropertyKind.ENUM and p.type_name_idl == name:
                root_effect = p.enum_fields.root.effect_name or ""
                p.type_name_idl += "3D" if "3D" in root_effect else "2D"


# ===--- Native enum definitions ---=== #


@dataclass(frozen=True)
class NativeEnumValue:
    name: str
    value: str | None


@dataclass(frozen=True)
class NativeEnum:
    name: str
    values: tuple[NativeEnumValue, ...]

    @property
    def value_names(self) -> tuple[str, ...]:
        return tuple(v.name for v in self.values)


_TYPEDEF_ENUM = re.compile(r"^\s*typedef\s+enum\s+(\w+)\s*(\{)?\s*$")
_ENUM_MEMBER = re.compile(r"^\s*([A-Za-z_]\w*)\s*(?:=\s*([^,/]+?))?\s*,?\s*(?://.*)?$")


def parse_native_enums(text: str) -> list[NativeEnum]:
    """Harvest `typedef enum NAME { ... } NAME;` blocks from header text.

    Property-index enums (names ending in PROP), FORCE_DWORD sentinels,
    comment lines and lines that are not `NAME [= value],` are skipped.
    """
    enums: list[NativeEnum] = []
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        match = _TYPEDEF_ENUM.match(lines[i])
        i += 1
        if match is None or match.group(1).endswith("PROP"):
            continue
        name = match.group(1)
        values = []
        while i < len(lines):
            line = lines[i].strip()
            i += 1
            if line.startswith("}"):
                break
            if not line or line == "{" or line.startswith("//") or line.startswith("#"):
                continue
            member = _ENUM_MEMBER.match(line)
            if member is None or member.group(1).endswith("FORCE_DWORD"):
                continue
            value = member.group(2).strip() if member.group(2) else None
            values.append(NativeEnumValue(member.group(1), value))
        enums.append(NativeEnum(name, tuple(values)))
    return enums


def load_native_enums(headers: Iterable[Path]) -> list[NativeEnum]:
    enums = []
    for header in headers:
        print(f"Parsing: {header}")
        enums.extend(parse_native_enums(header.read_text(encoding="utf-8", errors="replace")))
    return enums


def _normalize_for_match(s: str) -> str:
    return s.replace("_", "").replace(" ", "").replace("-", "").lower()


def native_enum_matches(prop: EffectProperty, native: NativeEnum, match_name: bool) -> bool:
    if match_name and _normalize_for_match(prop.effect_name) not in _normalize_for_match(
        native.name
    ):
        return False
    fields = prop.enum_fields.own_fields
    if len(fields) != len(native.values):
        return False
    return all(
        _normalize_for_match(f.display_name) in _normalize_for_match(v.name)
        for f, v in zip(fields, native.values)
    )


def find_native_enum(prop: EffectProperty, natives: list[NativeEnum]) -> NativeEnum | None:
    """First native enum that fits, preferring ones named after the effect."""
    for match_name in (True, False):
        for native in natives:
            if native_enum_matches(prop, native, match_name):
                return native
    return None


def assign_native_enums(effects: list[Effect], natives: list[NativeEnum]) -> None:
    for p in all_properties(effects):
        if p.enum_fields is not None:
            p.enum_fields.native_enum = find_native_enum(p, natives)


# ===--- Effect property types ---=== #


def resolve_type_names(effects: list[Effect], root_namespace: str) -> None:
    """Fill the (IDL, C++, boxed) type name triple of every value property."""
    for p in all_properties(effects):
        kind = p.type.kind
        if kind is PropertyKind.STRING:
            continue
        if kind is PropertyKind.BOOL:
            p.type_name_idl = p.type_name_cpp = p.type_name_boxed = "boolean"
        elif kind is PropertyKind.INT32:
            p.type_name_idl, p.type_name_cpp, p.type_name_boxed = "INT32", "int32_t", "int32_t"
        elif kind is PropertyKind.UINT32:
            p.type_name_idl, p.type_name_cpp, p.type_name_boxed = "UINT32", "uint32_t", "uint32_t"
        elif kind is PropertyKind.FLOAT:
            p.type_name_idl = p.type_name_cpp = p.type_name_boxed = "float"
        elif kind in (PropertyKind.VECTOR, PropertyKind.MATRIX):
            count = p.type.element_count
            if kind is PropertyKind.VECTOR and "Rect" in p.name and count == 4:
                p.type_name_idl, p.type_name_cpp = "Windows.Foundation.Rect", "Rect"
            elif kind is PropertyKind.VECTOR and "Color" in p.name and count in (3, 4):
                p.type_name_idl, p.type_name_cpp = "Windows.UI.Color", "Color"
            else:
                alias = p.type.alias_name
                p.type_name_idl = f"{root_namespace}.Numerics.{alias}"
                p.type_name_cpp = f"Numerics::{alias}"
            p.type_name_boxed = f"float[{count}]"
        elif kind is PropertyKind.BLOB:
            p.type_name_idl = p.type_name_cpp = p.type_name_boxed = "float"
            p.is_array = True
        elif kind is PropertyKind.ENUM:
            p.type_name_cpp = p.type_name_idl
            p.type_name_boxed = "uint32_t"
        else:
            p.type_name_idl = p.type_name_cpp = p.type_name_boxed = p.type.raw


def register_uuids(effects: list[Effect], effects_namespace: str) -> None:
    for effect in effects:
        if not effect.is_enabled:
            continue
        if effect.override.uuid:
            effect.uuid = effect.override.uuid.upper()
        else:
            effect.uuid = uuid_for_name(f"{effects_namespace}.{effect.interface_name}")


def _enum_value_index(prop: EffectProperty, value: EnumValueOverride) -> int:
    if value.index is not None:
        return int(value.index)
    # Without an Index the field is found by name, before or after its rename.
    names = (value.name, value.projected_name_override)
    for i, f in enumerate(prop.enum_fields.fields):
        if f.name in names:
            return i
    raise ModelError(f"Enum override {prop.type_name_idl} names an unknown value: {value.name}")


def apply_enum_overrides(effects: list[Effect], overrides: dict[str, EnumOverride]) -> None:
    for p in all_properties(effects):
        if p.type.kind is not PropertyKind.ENUM:
            continue
        override = overrides.get(p.type_name_idl)
        if override is None:
            continue
        if override.projected_name_override is not None:
            p.type_name_cpp = override.projected_name_override
            p.type_name_idl = override.projected_name_override
            if override.namespace is not None:
                p.type_name_idl = f"{override.namespace}.{override.projected_name_override}"
        p.should_project = override.should_project
        for value in override.values:
            if not value.should_project:
                index = _enum_value_index(p, value)
                if index not in p.excluded_enum_indexes:
                    p.excluded_enum_indexes.append(index)
            if value.projected_name_override is not None:
                for f in p.enum_fields.fields:
                    if f.name == value.name:
                        f.name = value.projected_name_override


def apply_effect_overrides(effects: list[Effect]) -> None:
    for effect in effects:
        override = effect.override
        if override is None:
            continue
        for input_override in override.inputs:
            if not 0 <= input_override.index < len(effect.inputs):
                raise ModelError(
                    f"{effect.display_name}: override renames input {input_override.index}, "
                    f"but the effect has {len(effect.inputs)} inputs"
                )
            effect.inputs[input_override.index].name = input_override.name
        for po in override.properties:
            p = effect.find_property(po.name)
            if p is None:
                raise ModelError(
                    f"{effect.display_name}: override names unknown property {po.name}"
                )
            if po.projected_name_override is not None:
                p.name = po.projected_name_override
            if po.default_value_override is not None:
                p.default_value_override = po.default_value_override
            p.is_hidden = po.is_hidden
            p.is_hand_coded = po.is_hand_coded
            p.convert_radians_to_degrees = po.convert_radians_to_degrees


def process_effects(
    effects: list[Effect], settings: Settings, natives: list[NativeEnum]
) -> None:
    """Run every effect pass in order. All effects take part in enum sharing,
    whether or not they are emitted."""
    attach_effect_overrides(effects, settings)
    assign_effect_names_to_properties(effects)
    assign_class_names(effects)
    detect_common_enums(effects)
    assign_property_names(effects)
    resolve_similar_enums(effects)
    assign_native_enums(effects, natives)
    resolve_type_names(effects, settings.root_namespace)
    register_uuids(effects, settings.effects_namespace)
    apply_enum_overrides(effects, settings.effects.enums)
    apply_effect_overrides(effects)


# ===--- Literals and validation ---=== #

FLOAT_INFINITY = "std::numeric_limits<float>::infinity()"
VECTOR_COMPONENTS = ("X", "Y", "Z", "W")


def _is_infinity(raw: str) -> bool:
    return raw.strip().lower().lstrip("+-") in ("inf", "infinity")


def format_float(raw: str) -> str:
    """1 -> 1.0f, 0.5 -> 0.5f, -INF -> -std::numeric_limits<float>::infinity()."""
    text = raw.strip()
    if _is_infinity(text):
        return ("-" if text.startswith("-") else "") + FLOAT_INFINITY
    if text.lower().endswith("f"):
        text = text[:-1]
    if "." not in text and "e" not in text.lower():
        text += ".0"
    return text + "f"


def _float_value_literal(value: float) -> str:
    if math.isinf(value):
        return ("-" if value < 0 else "") + FLOAT_INFINITY
    return format_float(repr(value))


def split_components(raw: str) -> list[str]:
    """Vector text "( 1.0, 2.0 )" -> ["1.0", "2.0"]."""
    inner = raw.strip().strip("()[]{}")
    return [c.strip() for c in inner.split(",") if c.strip()]


def _to_byte(component: str) -> int:
    return int(round(min(max(float(component), 0.0), 1.0) * 255))


def format_color(raw: str) -> str:
    """R, G, B[, A] in 0..1 -> Color{ A, R, G, B } in 0..255."""
    components = split_components(raw)
    if len(components) == 3:
        components.append("1")
    if len(components) != 4:
        raise ModelError(f"Colour value needs 3 or 4 components: {raw}")
    r, g, b, a = (_to_byte(c) for c in components)
    return f"Color{{ {a}, {r}, {g}, {b} }}"


def format_rect(raw: str) -> str:
    """Left, top, right, bottom -> Rect{ x, y, width, height }."""
    components = split_components(raw)
    if len(components) != 4:
        raise ModelError(f"Rect value needs 4 components: {raw}")
    left, top, right, bottom = (float(c) for c in components)
    values = (left, top, right - left, bottom - top)
    return "Rect{ " + ", ".join(_float_value_literal(v) for v in values) + " }"


def format_scalar(prop: EffectProperty, raw: str) -> str:
    kind = prop.type.kind
    if kind is PropertyKind.FLOAT:
        return format_float(raw)
    if kind is PropertyKind.UINT32:
        text = raw.strip()
        return text if text.upper().endswith("U") else text + "U"
    return raw.strip()


def format_default_value(prop: EffectProperty) -> str | None:
    """C++ expression for the property's default, or None when it has none."""
    raw = prop.default_value
    if raw is None or prop.is_array:
        return None
    kind = prop.type.kind
    if kind is PropertyKind.BOOL:
        return f"static_cast<boolean>({raw.strip().lower()})"
    if kind is PropertyKind.ENUM:
        index = int(raw.strip(), 0)
        native = prop.enum_fields.native_enum
        if native is not None and 0 <= index < len(native.values):
            return native.values[index].name
        return f"static_cast<uint32_t>({index})"
    if kind in (PropertyKind.VECTOR, PropertyKind.MATRIX):
        if prop.type_name_cpp == "Color":
            return format_color(raw)
        if prop.type_name_cpp == "Rect":
            return format_rect(raw)
        components = ", ".join(format_float(c) for c in split_components(raw))
        return f"{prop.type_name_cpp}{{ {components} }}"
    return format_scalar(prop, raw)


def build_validation_expression(prop: EffectProperty) -> str | None:
    """Range checks on `value`, then one inequality per excluded enum index.

    Vector bounds expand per component: every minimum first, then every
    maximum. Infinite bounds produce no comparison.
    """
    terms: list[str] = []
    kind = prop.type.kind
    bounds = ((prop.min_value, ">="), (prop.max_value, "<="))
    if kind in (PropertyKind.FLOAT, PropertyKind.INT32, PropertyKind.UINT32):
        for bound, op in bounds:
            if bound is not None and not _is_infinity(bound):
                terms.append(f"(value {op} {format_scalar(prop, bound)})")
    elif kind is PropertyKind.VECTOR and prop.type_name_cpp not in ("Color", "Rect"):
        for bound, op in bounds:
            if bound is None:
                continue
            for component, raw in zip(VECTOR_COMPONENTS, split_components(bound)):
                if not _is_infinity(raw):
                    terms.append(f"(value.{component} {op} {format_float(raw)})")
    for index in prop.excluded_enum_indexes:
        terms.append(f"(static_cast<uint32_t>(value) != {index}U)")
    return " && ".join(terms) or None


MAPPING_DIRECT = "GRAPHICS_EFFECT_PROPERTY_MAPPING_DIRECT"
MAPPING_RADIANS_TO_DEGREES = "GRAPHICS_EFFECT_PROPERTY_MAPPING_RADIANS_TO_DEGREES"
MAPPING_COLOR_TO_VECTOR3 = "GRAPHICS_EFFECT_PROPERTY_MAPPING_COLOR_TO_VECTOR3"
MAPPING_COLOR_TO_VECTOR4 = "GRAPHICS_EFFECT_PROPERTY_MAPPING_COLOR_TO_VECTOR4"
MAPPING_RECT_TO_VECTOR4 = "GRAPHICS_EFFECT_PROPERTY_MAPPING_RECT_TO_VECTOR4"


def property_mapping_kind(prop: EffectProperty) -> str:
    if prop.convert_radians_to_degrees:
        return MAPPING_RADIANS_TO_DEGREES
    if prop.type_name_cpp == "Color":
        if prop.type.element_count == 3:
            return MAPPING_COLOR_TO_VECTOR3
        return MAPPING_COLOR_TO_VECTOR4
    if prop.type_name_cpp == "Rect":
        return MAPPING_RECT_TO_VECTOR4
    return MAPPING_DIRECT


def align_columns(rows: list[tuple[str, ...]]) -> list[str]:
    """Pad every cell but the last to its column width: "{ a,  b,   c }"."""
    if not rows:
        return []
    width = len(rows[0])
    cells = [[f"{cell}," if i < width - 1 else cell for i, cell in enumerate(row)] for row in rows]
    widths = [max(len(row[i]) for row in cells) for i in range(width - 1)]
    return [
        "{ "
        + " ".join(cell.ljust(widths[i]) if i < width - 1 else cell for i, cell in enumerate(row))
        + " }"
        for row in cells
    ]


# ===--- Effect emission ---=== #

EFFECT_SOURCE_TYPE = "IGRAPHICSEFFECTSOURCE"
EFFECTS_COMMON_FILENAME = "EffectsCommon.abi.idl"
EFFECT_MAKERS_FILENAME = "EffectMakers.cpp"


def write_effect_enum(out: Formatter, prop: EffectProperty) -> None:
    fields = prop.enum_fields.fields
    out.write_line("[version(VERSION)]")
    out.write_line(f"typedef enum {prop.type_name_idl}")
    out.write_line("{")
    out.indent()
    for i, f in enumerate(fields):
        suffix = "," if i < len(fields) - 1 else ""
        out.write_line(f"{f.name} = {i}{suffix}")
    out.unindent()
    out.write_line(f"}} {prop.type_name_idl};")


def unique_effect_enums(effect: Effect) -> list[EffectProperty]:
    return [
        p for p in effect.value_properties
        if p.type.kind is PropertyKind.ENUM and not p.enum_fields.is_shared and p.should_project
    ]


def statics_interface_name(effect: Effect) -> str:
    return f"{effect.interface_name}Statics"


def runtime_class_macro(effect: Effect, effects_namespace: str) -> str:
    return "RuntimeClass_" + effects_namespace.replace(".", "_") + "_" + effect.class_name


def write_property_accessors_idl(out: Formatter, prop: EffectProperty) -> None:
    if prop.is_array:
        out.write_line("[propget]")
        out.write_line(
            f"HRESULT {prop.name}([out] UINT32* valueCount, "
            f"[out, size_is(, *valueCount), retval] {prop.type_name_idl}** valueElements);"
        )
        out.write_line()
        out.write_line("[propput]")
        out.write_line(
            f"HRESULT {prop.name}([in] UINT32 valueCount, "
            f"[in, size_is(valueCount)] {prop.type_name_idl}* valueElements);"
        )
    else:
        out.write_line("[propget]")
        out.write_line(f"HRESULT {prop.name}([out, retval] {prop.type_name_idl}* value);")
        out.write_line()
        out.write_line("[propput]")
        out.write_line(f"HRESULT {prop.name}([in] {prop.type_name_idl} value);")
    out.write_line()


def write_effect_idl(out: Formatter, effect: Effect, settings: Settings) -> None:
    write_leading_comment(out, settings.copyright)
    write_win_ver_begin(out, effect.win_ver)
    out.write_line(f"namespace {settings.effects_namespace}")
    out.write_line("{")
    out.indent()

    for prop in unique_effect_enums(effect):
        write_effect_enum(out, prop)
        out.write_line()

    name = effect.class_name
    out.write_line(f"runtimeclass {name};")
    out.write_line()
    out.write_line(f"[version(VERSION), uuid({effect.uuid}), exclusiveto({name})]")
    out.write_line(f"interface {effect.interface_name} : IInspectable")
    out.indent()
    out.write_line(f"requires {settings.root_namespace}.ICanvasImage")
    out.unindent()
    out.write_line("{")
    out.indent()
    for prop in effect.projected_properties:
        write_property_accessors_idl(out, prop)
    if effect.has_variable_inputs:
        out.write_line("[propget]")
        out.write_line(
            "HRESULT Sources([out, retval] "
            f"Windows.Foundation.Collections.IVector<{EFFECT_SOURCE_TYPE}*>** value);"
        )
        out.write_line()
    else:
        for effect_input in effect.inputs:
            out.write_line("[propget]")
            out.write_line(
                f"HRESULT {effect_input.name}([out, retval] {EFFECT_SOURCE_TYPE}** source);"
            )
            out.write_line()
            out.write_line("[propput]")
            out.write_line(f"HRESULT {effect_input.name}([in] {EFFECT_SOURCE_TYPE}* source);")
            out.write_line()
    out.unindent()
    out.write_line("};")
    out.write_line()

    if effect.has_statics:
        statics = statics_interface_name(effect)
        out.write_line(
            f"[version(VERSION), uuid({uuid_for_name(f'{settings.effects_namespace}.{statics}')}), "
            f"exclusiveto({name})]"
        )
        out.write_line(f"interface {statics} : IInspectable")
        out.write_line("{")
        out.indent()
        if effect.override.is_supported_check:
            out.write_line("[propget] HRESULT IsSupported([out, retval] boolean* value);")
        for snippet in effect.override.static_methods:
            out.write_lines(line.strip() for line in snippet.splitlines())
        out.unindent()
        out.write_line("};")
        out.write_line()
        out.write_line(f"[STATIC_ATTRIBUTE({statics}, VERSION)]")

    out.write_line("[version(VERSION), activatable(VERSION)]")
    out.write_line(f"runtimeclass {name}")
    out.write_line("{")
    out.indent()
    out.write_line(f"[default] interface {effect.interface_name};")
    out.unindent()
    out.write_line("}")
    out.unindent()
    out.write_line("}")
    write_win_ver_end(out, effect.win_ver)


def effect_id_name(effect: Effect) -> str:
    return "CLSID_D2D1" + effect.display_name.replace(" ", "")


def write_effect_header(out: Formatter, effect: Effect, settings: Settings) -> None:
    write_leading_comment(out, settings.copyright)
    out.write_line("#pragma once")
    out.write_line()
    write_win_ver_begin(out, effect.win_ver)
    out.write_line(cpp_namespace_open(settings.effects_namespace))
    out.write_line("{")
    out.indent()
    out.write_line("using namespace ::Microsoft::WRL;")
    out.write_line(f"using namespace ABI::{settings.root_namespace.replace('.', '::')};")
    out.write_line()

    name = effect.class_name
    class_macro = runtime_class_macro(effect, settings.effects_namespace)
    out.write_line(f"class {name} : public RuntimeClass<")
    out.indent()
    out.write_line(f"{effect.interface_name},")
    out.write_line(f"MixIn<{name}, CanvasEffect>>,")
    out.write_line("public CanvasEffect")
    out.unindent()
    out.write_line("{")
    out.indent()
    out.write_line(f"InspectableClass({class_macro}, BaseTrust);")
    out.write_line()
    out.unindent()
    out.write_line("public:")
    out.indent()
    out.write_line(f"{name}(ICanvasDevice* device = nullptr, ID2D1Effect* effect = nullptr);")
    out.write_line()
    out.write_line(f"static IID const& EffectId() {{ return {effect_id_name(effect)}; }}")
    out.write_line()
    for prop in effect.projected_properties:
        if prop.is_array:
            out.write_line(f"EFFECT_ARRAY_PROPERTY({prop.name}, {prop.type_name_cpp});")
        else:
            out.write_line(f"EFFECT_PROPERTY({prop.name}, {prop.type_name_cpp});")
    if effect.has_variable_inputs:
        out.write_line("EFFECT_SOURCES_PROPERTY();")
    else:
        for effect_input in effect.inputs:
            out.write_line(f"EFFECT_SOURCE_PROPERTY({effect_input.name});")
    if effect.projected_properties:
        out.write_line()
        out.write_line("EFFECT_PROPERTY_MAPPING();")
    out.unindent()
    out.write_line("};")

    if effect.has_statics:
        out.write_line()
        statics = statics_interface_name(effect)
        out.write_line(f"class {name}Factory : public AgileActivationFactory<{statics}>")
        out.write_line("{")
        out.indent()
        out.write_line(f"InspectableClassStatic({class_macro}, BaseTrust);")
        out.write_line()
        out.unindent()
        out.write_line("public:")
        out.indent()
        out.write_line("IFACEMETHODIMP ActivateInstance(IInspectable**) override;")
        if effect.override.is_supported_check:
            out.write_line("IFACEMETHOD(get_IsSupported)(boolean* value) override;")
        out.unindent()
        out.write_line("};")

    out.unindent()
    out.write_line(cpp_namespace_close(settings.effects_namespace))
    write_win_ver_end(out, effect.win_ver)


def write_property_implementation(out: Formatter, effect: Effect, prop: EffectProperty) -> None:
    if prop.is_array:
        out.write_line(f"IMPLEMENT_EFFECT_ARRAY_PROPERTY({effect.class_name},")
        out.indent()
        out.write_line(f"{prop.name},")
        out.write_line(f"{prop.type_name_boxed},")
        out.write_line(f"{prop.native_property_name})")
        out.unindent()
        return

    validation = build_validation_expression(prop)
    if validation is None:
        out.write_line(f"IMPLEMENT_EFFECT_PROPERTY({effect.class_name},")
    else:
        out.write_line(f"IMPLEMENT_EFFECT_PROPERTY_WITH_VALIDATION({effect.class_name},")
    out.indent()
    out.write_line(f"{prop.name},")
    if prop.convert_radians_to_degrees:
        out.write_line("ConvertRadiansToDegrees,")
    else:
        out.write_line(f"{prop.type_name_boxed},")
    out.write_line(f"{prop.type_name_cpp},")
    if validation is None:
        out.write_line(f"{prop.native_property_name})")
    else:
        out.write_line(f"{prop.native_property_name},")
        out.write_line(f"{validation})")
    out.unindent()


def write_effect_cpp(out: Formatter, effect: Effect, settings: Settings) -> None:
    write_leading_comment(out, settings.copyright)
    name = effect.class_name
    out.write_line('#include "pch.h"')
    out.write_line(f'#include "{name}.h"')
    out.write_line()
    write_win_ver_begin(out, effect.win_ver)
    out.write_line(cpp_namespace_open(settings.effects_namespace))
    out.write_line("{")
    out.indent()

    input_count = 0 if effect.has_variable_inputs else len(effect.inputs)
    is_input_count_fixed = "false" if effect.has_variable_inputs else "true"
    out.write_line(f"{name}::{name}(ICanvasDevice* device, ID2D1Effect* effect)")
    out.indent()
    out.write_line(
        f": CanvasEffect(EffectId(), {len(effect.value_properties)}, {input_count}, "
        f"{is_input_count_fixed}, device, effect, static_cast<{effect.interface_name}*>(this))"
    )
    out.unindent()
    out.write_line("{")
    out.indent()
    defaults = []
    for p in effect.value_properties:
        value = format_default_value(p)
        if value is not None:
            defaults.append((p, value))
    if defaults:
        out.write_line("if (!effect)")
        out.write_line("{")
        out.indent()
        out.write_line("// Set default values")
        for p, value in defaults:
            out.write_line(
                f"SetBoxedProperty<{p.type_name_boxed}>({p.native_property_name}, {value});"
            )
        out.unindent()
        out.write_line("}")
    out.unindent()
    out.write_line("}")

    for prop in effect.projected_properties:
        if prop.is_hand_coded:
            continue
        out.write_line()
        write_property_implementation(out, effect, prop)

    if effect.has_variable_inputs:
        out.write_line()
        out.write_line(f"IMPLEMENT_EFFECT_SOURCES_PROPERTY({name})")
    else:
        for index, effect_input in enumerate(effect.inputs):
            out.write_line()
            out.write_line(f"IMPLEMENT_EFFECT_SOURCE_PROPERTY({name},")
            out.indent()
            out.write_line(f"{effect_input.name},")
            out.write_line(f"{index})")
            out.unindent()

    rows = [
        (f'L"{p.name}"', p.native_property_name, property_mapping_kind(p))
        for p in effect.projected_properties
    ]
    if rows:
        out.write_line()
        out.write_line(f"IMPLEMENT_EFFECT_PROPERTY_MAPPING({name},")
        out.indent()
        aligned = align_columns(rows)
        for i, line in enumerate(aligned):
            out.write_line(line + ("," if i < len(aligned) - 1 else ")"))
        out.unindent()

    out.write_line()
    if effect.has_statics:
        write_factory_implementation(out, effect)
        out.write_line(f"ActivatableClassWithFactory({name}, {name}Factory);")
    else:
        out.write_line(f"ActivatableClass({name});")
    out.unindent()
    out.write_line(cpp_namespace_close(settings.effects_namespace))
    write_win_ver_end(out, effect.win_ver)


def write_factory_implementation(out: Formatter, effect: Effect) -> None:
    name = effect.class_name
    out.write_line(f"IFACEMETHODIMP {name}Factory::ActivateInstance(IInspectable** instance)")
    out.write_line("{")
    out.indent()
    out.write_line("return ExceptionBoundary([&]")
    out.write_line("{")
    out.indent()
    out.write_line(f"auto effect = Make<{name}>();")
    out.write_line("CheckMakeResult(effect);")
    out.write_line()
    out.write_line("ThrowIfFailed(effect.CopyTo(instance));")
    out.unindent()
    out.write_line("});")
    out.unindent()
    out.write_line("}")
    out.write_line()

    check = effect.override.is_supported_check
    if check:
        out.write_line(f"IFACEMETHODIMP {name}Factory::get_IsSupported(_Out_ boolean* result)")
        out.write_line("{")
        out.indent()
        out.write_line("return ExceptionBoundary([=]")
        out.write_line("{")
        out.indent()
        out.write_line("CheckInPointer(result);")
        out.write_line(f"*result = {check}();")
        out.unindent()
        out.write_line("});")
        out.unindent()
        out.write_line("}")
        out.write_line()


def common_enum_properties(effects: list[Effect]) -> list[EffectProperty]:
    """Representative shared enums that some emitted effect uses."""
    used = {
        p.type_name_idl
        for effect in effects if effect.is_enabled
        for p in effect.value_properties
    }
    selected = []
    emitted: set[str] = set()
    for p in all_properties(effects):
        if (
            p.type.kind is PropertyKind.ENUM
            and p.enum_fields.is_representative
            and p.should_project
            and p.type_name_idl in used
            and p.type_name_idl not in emitted
        ):
            selected.append(p)
            emitted.add(p.type_name_idl)
    return selected


def write_effects_common(out: Formatter, effects: list[Effect], settings: Settings) -> None:
    write_leading_comment(out, settings.copyright)
    out.write_line(f"namespace {settings.effects_namespace}")
    out.write_line("{")
    out.indent()
    for i, prop in enumerate(common_enum_properties(effects)):
        if i:
            out.write_line()
        write_effect_enum(out, prop)
    out.unindent()
    out.write_line("}")


def group_by_win_ver(effects: list[Effect]) -> list[tuple[str | None, list[Effect]]]:
    """Ungated effects first, then one group per version tag, each by class name."""
    enabled = sorted(
        (e for e in effects if e.is_enabled),
        key=lambda e: (e.win_ver is not None, e.win_ver or "", e.class_name),
    )
    return [(win_ver, list(group)) for win_ver, group in groupby(enabled, key=lambda e: e.win_ver)]


def write_effect_makers(out: Formatter, effects: list[Effect], settings: Settings) -> None:
    write_leading_comment(out, settings.copyright)
    out.write_line('#include "pch.h"')
    out.write_line()
    groups = group_by_win_ver(effects)

    for win_ver, group in groups:
        write_win_ver_begin(out, win_ver)
        for effect in group:
            out.write_line(f'#include "{effect.class_name}.h"')
        write_win_ver_end(out, win_ver)
        out.write_line()

    out.write_line(
        "std::pair<IID, CanvasEffect::MakeEffectFunction> CanvasEffect::m_effectMakers[] ="
    )
    out.write_line("{")
    out.indent()
    aligned = iter(
        align_columns(
            [
                (f"{e.class_name}::EffectId()", f"MakeEffect<{e.class_name}>")
                for _, group in groups
                for e in group
            ]
        )
    )
    for win_ver, group in groups:
        write_win_ver_begin(out, win_ver)
        for _ in group:
            out.write_line(next(aligned) + ",")
        write_win_ver_end(out, win_ver)
        out.write_line()
    out.write_line("{ GUID_NULL, nullptr }")
    out.unindent()
    out.write_line("};")


# ===--- Staged writer ---=== #


@dataclass(frozen=True)
class PlannedFile:
    """One output file: where it goes and how to render it."""

    path: Path
    render: Callable[[Formatter], None]


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Filename written, e.g. "Canvas.codegen.idl".
        path: Absolute destination path.
        line_count: Number of newline characters in the written content.
    """

    filename: str
    path: Path
    line_count: int


@dataclass(frozen=True)
class WriteResult:
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)


def write_output_set(plan: list[PlannedFile]) -> WriteResult:
    """Render every planned file, then move them into place.

    Files are rendered into a staging directory first. If any renderer
    raises, nothing reaches the destination directories and the exception
    propagates.

    Raises:
        ModelError: A renderer hit an inconsistent model.
        OSError: Staging or final write failure.
    """
    staged: list[tuple[Path, Path, int]] = []
    with tempfile.TemporaryDirectory(prefix="codegen-") as staging:
        for index, planned in enumerate(plan):
            stage_path = Path(staging) / str(index) / planned.path.name
            with Formatter(stage_path) as out:
                planned.render(out)
            staged.append((stage_path, planned.path, out.text.count("\n")))

        for stage_path, destination, _ in staged:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(stage_path), str(destination))

    return WriteResult(
        files=tuple(
            FileWriteResult(destination.name, destination.resolve(), line_count)
            for _, destination, line_count in staged
        )
    )


def plan_data_type_files(model: TypeModel, output_dir: Path) -> list[PlannedFile]:
    base = model.settings.filename_base
    return [
        PlannedFile(
            output_dir / f"{base}.codegen.idl", lambda out: write_data_types_idl(out, model)
        ),
        PlannedFile(
            output_dir / f"{base}.codegen.cpp", lambda out: write_data_types_cpp(out, model)
        ),
    ]


def plan_effect_files(
    effects: list[Effect], settings: Settings, output_dir: Path
) -> list[PlannedFile]:
    plan = [
        PlannedFile(
            output_dir / EFFECTS_COMMON_FILENAME,
            lambda out: write_effects_common(out, effects, settings),
        )
    ]
    for effect in effects:
        if not effect.is_enabled:
            continue
        for suffix, writer in (
            (".abi.idl", write_effect_idl),
            (".h", write_effect_header),
            (".cpp", write_effect_cpp),
        ):
            plan.append(
                PlannedFile(
                    output_dir / f"{effect.class_name}{suffix}",
                    partial(writer, effect=effect, settings=settings),
                )
            )
    plan.append(
        PlannedFile(
            output_dir / EFFECT_MAKERS_FILENAME,
            lambda out: write_effect_makers(out, effects, settings),
        )
    )
    return plan


# ===--- Pipeline ---=== #


def run_generate(config: GenerateConfig) -> WriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Loads Settings.xml and the type documents, builds the type model, runs the
    effect passes (unless disabled) and writes the whole output set.

    Args:
        config: Validated GenerateConfig from build_config.

    Returns:
        WriteResult describing every file written.

    Raises:
        OSError: Input not readable or output not writable.
        ET.ParseError: Malformed XML input.
        ModelError: Inputs and overrides out of sync.
    """
    settings = load_settings(config.input_dir)
    documents = load_type_documents(config.input_dir, settings)
    model = build_type_model(settings, documents)
    print(
        f"  Types: {len(model.types)} registered; {len(model.output.enums)} enums, "
        f"{len(model.output.structs)} structs, {len(model.output.interfaces)} interfaces projected"
    )
    plan = plan_data_type_files(model, config.output_dir)

    effects: list[Effect] = []
    if config.generate_effects:
        effects = load_effects(config.input_dir / EFFECTS_SUBDIR)
        natives = load_native_enums(config.native_headers)
        print(f"  Native enums: {len(natives)} harvested")
        process_effects(effects, settings, natives)
        plan += plan_effect_files(effects, settings, config.effects_output_dir)

    result = write_output_set(plan)
    print(f"  Written: {len(result.files)} files, {result.total_lines} lines")

    print_generation_summary(build_generation_summary(config, model, effects, result))
    return result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationSummary:
    """Immutable data for the post-generation console report.

    Attributes:
        input_dir: Directory holding Settings.xml.
        output_dir: Destination of the data type files.
        effects_output_dir: Destination of the effect files, None when skipped.
        enums: Namespaced enums projected.
        structs: Namespaced structs projected.
        interfaces: Namespaced interfaces projected.
        effects_parsed: Effect descriptors read (all take part in enum sharing).
        effects_emitted: Effects with an override entry.
        shared_enums: Distinct representative enums shared between effects.
        native_matches: Enum properties matched to a native definition.
        files: Ordered write results.
    """

    input_dir: str
    output_dir: str
    effects_output_dir: str | None
    enums: int
    structs: int
    interfaces: int
    effects_parsed: int
    effects_emitted: int
    shared_enums: int
    native_matches: int
    files: tuple[FileWriteResult, ...]


def build_generation_summary(
    config: GenerateConfig,
    model: TypeModel,
    effects: list[Effect],
    write_result: WriteResult,
) -> GenerationSummary:
    enum_payloads = [p.enum_fields for p in all_properties(effects) if p.enum_fields is not None]
    return GenerationSummary(
        input_dir=str(config.input_dir),
        output_dir=str(config.output_dir),
        effects_output_dir=str(config.effects_output_dir) if config.generate_effects else None,
        enums=len(model.output.enums),
        structs=len(model.output.structs),
        interfaces=len(model.output.interfaces),
        effects_parsed=len(effects),
        effects_emitted=sum(1 for e in effects if e.is_enabled),
        shared_enums=sum(1 for f in enum_payloads if f.is_representative),
        native_matches=sum(1 for f in enum_payloads if f.native_enum is not None),
        files=write_result.files,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as a multi-line console string.

    The effects rows appear only when effects were generated. Returns a
    string with exactly one trailing newline.
    """
    lines: list[str] = []
    lines.append("Projection sources generated:")
    lines.append("")
    lines.append(f"  Input:      {summary.input_dir}")
    lines.append(f"  Output:     {summary.output_dir}")
    if summary.effects_output_dir is not None:
        lines.append(f"  Effects:    {summary.effects_output_dir}")
    lines.append("")
    lines.append("  Types projected:")
    lines.append(f"    {'Enums:':<14}{summary.enums:>6}")
    lines.append(f"    {'Structs:':<14}{summary.structs:>6}")
    lines.append(f"    {'Interfaces:':<14}{summary.interfaces:>6}")
    if summary.effects_output_dir is not None:
        lines.append("")
        lines.append("  Effects:")
        lines.append(
            f"    {'Emitted:':<14}{summary.effects_emitted:>6}"
            f"  (of {summary.effects_parsed} parsed)"
        )
        lines.append(f"    {'Shared enums:':<14}{summary.shared_enums:>6}")
        lines.append(f"    {'Native enums:':<14}{summary.native_matches:>6}  matched")

    lines.append("")
    lines.append("  Files written:")
    for file_result in summary.files:
        line_str = f"{file_result.line_count:>6,} lines"
        lines.append(f"    {file_result.filename:<36} {line_str}")

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    """Thin wrapper so format_generation_summary stays testable without stdout."""
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except ModelError as err:
        print(f"Model error: {err}")
        raise SystemExit(1) from err
    except (OSError, ET.ParseError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
