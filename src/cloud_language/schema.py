"""Schema loading for the Cloud Natural Language service.

The service schema ships with the package as a JSON description of the
``google.cloud.language.v1`` messages, enums and RPC methods. It is compiled
into a protobuf ``FileDescriptorProto`` at load time, so no generated
``_pb2`` modules are needed.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
import threading
from typing import Any

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message


logger = logging.getLogger(__name__)

PROTOS_PATH = Path(__file__).parent / "protos" / "language_service.json"

# Embedded form of the same description, for callers that must not touch the filesystem
PROTOS_JSON: dict[str, Any] = json.loads(PROTOS_PATH.read_text(encoding="utf-8"))

_FieldType = descriptor_pb2.FieldDescriptorProto

_SCALAR_TYPES = {
    "double": _FieldType.TYPE_DOUBLE,
    "float": _FieldType.TYPE_FLOAT,
    "int64": _FieldType.TYPE_INT64,
    "uint64": _FieldType.TYPE_UINT64,
    "int32": _FieldType.TYPE_INT32,
    "fixed64": _FieldType.TYPE_FIXED64,
    "fixed32": _FieldType.TYPE_FIXED32,
    "bool": _FieldType.TYPE_BOOL,
    "string": _FieldType.TYPE_STRING,
    "bytes": _FieldType.TYPE_BYTES,
    "uint32": _FieldType.TYPE_UINT32,
    "sfixed32": _FieldType.TYPE_SFIXED32,
    "sfixed64": _FieldType.TYPE_SFIXED64,
    "sint32": _FieldType.TYPE_SINT32,
    "sint64": _FieldType.TYPE_SINT64,
}

# Map keys may be any integral or string scalar
_MAP_KEY_TYPES = frozenset(_SCALAR_TYPES) - {"double", "float", "bytes"}

_cache_lock = threading.Lock()
_loaded: dict[str, "Protos"] = {}


class SchemaError(ValueError):
    """Raised when a schema description cannot be compiled."""


@dataclass(frozen=True)
class HttpRule:
    """HTTP binding of an RPC method, used by the fallback transport."""

    verb: str
    path: str
    body: str = "*"


@dataclass(frozen=True)
class MethodDescription:
    """One RPC method of a service."""

    name: str
    full_path: str
    request_class: type[Message]
    response_class: type[Message]
    http_rule: HttpRule | None = None


@dataclass(frozen=True)
class ServiceDescription:
    """A service and its RPC methods, keyed by RPC name."""

    full_name: str
    methods: dict[str, MethodDescription] = field(default_factory=dict)

    def method(self, name: str) -> MethodDescription:
        try:
            return self.methods[name]
        except KeyError:
            msg = f"Service {self.full_name} has no method {name!r}"
            raise KeyError(msg) from None


class Protos:
    """Compiled schema: message classes, enum descriptors and services."""

    def __init__(
        self,
        package: str,
        pool: descriptor_pool.DescriptorPool,
        services: dict[str, ServiceDescription],
    ) -> None:
        self.package = package
        self.pool = pool
        self._services = services

    def _qualify(self, name: str) -> str:
        name = name.lstrip(".")
        if name.startswith(f"{self.package}."):
            return name
        return f"{self.package}.{name}"

    def message_class(self, name: str) -> type[Message]:
        """Return the message class for ``name`` (short or fully qualified)."""
        descriptor = self.pool.FindMessageTypeByName(self._qualify(name))
        return message_factory.GetMessageClass(descriptor)

    def enum_descriptor(self, name: str):
        """Return the enum descriptor for ``name`` (short or fully qualified)."""
        return self.pool.FindEnumTypeByName(self._qualify(name))

    def lookup_service(self, name: str) -> ServiceDescription:
        """Return the description of service ``name`` (short or fully qualified)."""
        full_name = self._qualify(name)
        try:
            return self._services[full_name]
        except KeyError:
            msg = f"Unknown service {full_name!r}"
            raise KeyError(msg) from None

    @property
    def services(self) -> list[str]:
        return sorted(self._services)


def _json_name(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _entry_name(field_name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in field_name.split("_")) + "Entry"


class _SchemaCompiler:
    """Turns a JSON schema description into a ``FileDescriptorProto``."""

    def __init__(self, description: Mapping[str, Any]) -> None:
        package = description.get("package")
        if not package:
            msg = "Schema description has no 'package'"
            raise SchemaError(msg)
        self.description = description
        self.package = package
        self.file_name = description.get("file") or package.replace(".", "/") + ".proto"
        self._messages: set[str] = set()
        self._enums: set[str] = set()

    def compile(self) -> descriptor_pb2.FileDescriptorProto:
        self._index(self.package, self.description.get("enums", {}), self.description.get("messages", {}))

        file_proto = descriptor_pb2.FileDescriptorProto(
            name=self.file_name,
            package=self.package,
            syntax="proto3",
        )
        for name, values in self.description.get("enums", {}).items():
            file_proto.enum_type.append(self._build_enum(name, values))
        for name, spec in self.description.get("messages", {}).items():
            file_proto.message_type.append(self._build_message(name, spec, self.package))
        for name, spec in self.description.get("services", {}).items():
            file_proto.service.append(self._build_service(name, spec))
        return file_proto

    def _index(self, scope: str, enums: Mapping[str, Any], messages: Mapping[str, Any]) -> None:
        for name in enums:
            self._enums.add(f"{scope}.{name}")
        for name, spec in messages.items():
            full_name = f"{scope}.{name}"
            self._messages.add(full_name)
            self._index(full_name, spec.get("enums", {}), spec.get("nested", {}))

    def resolve(self, type_name: str, scope: str) -> tuple[int, str]:
        """Resolve a type reference the way protoc does, innermost scope first."""
        if type_name.startswith("."):
            candidates = [type_name[1:]]
        else:
            parts = scope.split(".")
            candidates = [".".join([*parts[:i], type_name]) for i in range(len(parts), -1, -1)]

        for candidate in candidates:
            if candidate in self._messages:
                return _FieldType.TYPE_MESSAGE, f".{candidate}"
            if candidate in self._enums:
                return _FieldType.TYPE_ENUM, f".{candidate}"

        msg = f"Unknown type {type_name!r} referenced from {scope}"
        raise SchemaError(msg)

    def _build_enum(self, name: str, values: Mapping[str, int]) -> descriptor_pb2.EnumDescriptorProto:
        enum_proto = descriptor_pb2.EnumDescriptorProto(name=name)
        for value_name, number in values.items():
            enum_proto.value.add(name=value_name, number=int(number))
        if not enum_proto.value or enum_proto.value[0].number != 0:
            msg = f"Enum {name} must declare a zero value first"
            raise SchemaError(msg)
        return enum_proto

    def _build_message(self, name: str, spec: Mapping[str, Any], scope: str) -> descriptor_pb2.DescriptorProto:
        full_name = f"{scope}.{name}"
        message_proto = descriptor_pb2.DescriptorProto(name=name)

        for enum_name, values in spec.get("enums", {}).items():
            message_proto.enum_type.append(self._build_enum(enum_name, values))
        for nested_name, nested_spec in spec.get("nested", {}).items():
            message_proto.nested_type.append(self._build_message(nested_name, nested_spec, full_name))

        seen_numbers: dict[int, str] = {}
        for field_name, field_spec in spec.get("fields", {}).items():
            number = field_spec.get("id")
            if not isinstance(number, int) or number <= 0:
                msg = f"Field {full_name}.{field_name} needs a positive integer 'id'"
                raise SchemaError(msg)
            if number in seen_numbers:
                msg = f"Field number {number} of {full_name} used by both {seen_numbers[number]} and {field_name}"
                raise SchemaError(msg)
            seen_numbers[number] = field_name
            self._build_field(message_proto, field_name, field_spec, full_name)

        for index, (oneof_name, members) in enumerate(spec.get("oneofs", {}).items()):
            message_proto.oneof_decl.add(name=oneof_name)
            by_name = {f.name: f for f in message_proto.field}
            for member in members:
                if member not in by_name:
                    msg = f"Oneof {full_name}.{oneof_name} names unknown field {member!r}"
                    raise SchemaError(msg)
                by_name[member].oneof_index = index

        return message_proto

    def _build_field(
        self,
        message_proto: descriptor_pb2.DescriptorProto,
        name: str,
        spec: Mapping[str, Any],
        scope: str,
    ) -> None:
        field_proto = message_proto.field.add(
            name=name,
            number=spec["id"],
            json_name=_json_name(name),
            label=_FieldType.LABEL_REPEATED if spec.get("rule") == "repeated" else _FieldType.LABEL_OPTIONAL,
        )

        key_type = spec.get("key_type")
        if key_type is None:
            self._set_type(field_proto, spec.get("type", ""), scope)
            return

        if key_type not in _MAP_KEY_TYPES:
            msg = f"Map field {scope}.{name} has invalid key type {key_type!r}"
            raise SchemaError(msg)
        entry = message_proto.nested_type.add(name=_entry_name(name))
        entry.options.map_entry = True
        entry.field.add(name="key", number=1, json_name="key", label=_FieldType.LABEL_OPTIONAL, type=_SCALAR_TYPES[key_type])
        value_field = entry.field.add(name="value", number=2, json_name="value", label=_FieldType.LABEL_OPTIONAL)
        self._set_type(value_field, spec.get("type", ""), f"{scope}.{entry.name}")

        field_proto.label = _FieldType.LABEL_REPEATED
        field_proto.type = _FieldType.TYPE_MESSAGE
        field_proto.type_name = f".{scope}.{entry.name}"

    def _set_type(self, field_proto: descriptor_pb2.FieldDescriptorProto, type_name: str, scope: str) -> None:
        if type_name in _SCALAR_TYPES:
            field_proto.type = _SCALAR_TYPES[type_name]
            return
        if not type_name:
            msg = f"Field {scope}.{field_proto.name} has no 'type'"
            raise SchemaError(msg)
        field_proto.type, field_proto.type_name = self.resolve(type_name, scope)

    def _build_service(self, name: str, spec: Mapping[str, Any]) -> descriptor_pb2.ServiceDescriptorProto:
        service_proto = descriptor_pb2.ServiceDescriptorProto(name=name)
        for method_name, method_spec in spec.get("methods", {}).items():
            input_kind, input_type = self.resolve(method_spec["request_type"], self.package)
            output_kind, output_type = self.resolve(method_spec["response_type"], self.package)
            if _FieldType.TYPE_ENUM in (input_kind, output_kind):
                msg = f"Method {name}.{method_name} must take and return messages"
                raise SchemaError(msg)
            service_proto.method.add(name=method_name, input_type=input_type, output_type=output_type)
        return service_proto


def _canonical_key(description: Mapping[str, Any]) -> str:
    return json.dumps(description, sort_keys=True, separators=(",", ":"))


def _build_protos(description: Mapping[str, Any]) -> Protos:
    compiler = _SchemaCompiler(description)
    file_proto = compiler.compile()

    pool = descriptor_pool.DescriptorPool()
    try:
        pool.AddSerializedFile(file_proto.SerializeToString())
    except TypeError as e:
        msg = f"Could not build {compiler.file_name}: {e}"
        raise SchemaError(msg) from e

    protos = Protos(compiler.package, pool, {})
    for service_name, service_spec in description.get("services", {}).items():
        full_name = f"{compiler.package}.{service_name}"
        methods = {}
        for method_name, method_spec in service_spec.get("methods", {}).items():
            http = method_spec.get("http")
            http_rule = None
            if http:
                verb = next(v for v in ("get", "post", "put", "patch", "delete") if v in http)
                http_rule = HttpRule(verb=verb, path=http[verb], body=http.get("body", ""))
            methods[method_name] = MethodDescription(
                name=method_name,
                full_path=f"/{full_name}/{method_name}",
                request_class=protos.message_class(method_spec["request_type"]),
                response_class=protos.message_class(method_spec["response_type"]),
                http_rule=http_rule,
            )
        protos._services[full_name] = ServiceDescription(full_name=full_name, methods=methods)

    logger.debug(
        f"Compiled {compiler.file_name}: {len(compiler._messages)} messages, "
        f"{len(compiler._enums)} enums, {len(protos.services)} services"
    )
    return protos


def load_protos(source: str | os.PathLike | Mapping[str, Any]) -> Protos:
    """Load and compile a schema description.

    Args:
        source: Path to a JSON schema description, or the already parsed description

    Returns:
        Compiled schema. Identical descriptions share one ``Protos`` instance,
        so message classes from repeated loads are interchangeable.

    Raises:
        SchemaError: The description is malformed or references unknown types
    """
    if isinstance(source, Mapping):
        description = source
    else:
        with Path(source).open(encoding="utf-8") as handle:
            try:
                description = json.load(handle)
            except json.JSONDecodeError as e:
                msg = f"Schema file {source} is not valid JSON: {e}"
                raise SchemaError(msg) from e

    key = _canonical_key(description)
    with _cache_lock:
        protos = _loaded.get(key)
        if protos is None:
            protos = _build_protos(description)
            _loaded[key] = protos
    return protos
