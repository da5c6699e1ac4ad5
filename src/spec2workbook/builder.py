"""Typed request and group construction from metadata payloads.

Required fields are checked in a fixed order (``id``, ``name``, then ``url``
and ``method`` for requests) and the first problem raises an error naming the
field. Optional fields are kept only when well typed; anything else is
dropped with a warning. Body shape mismatches are fatal for that request.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import InvalidFieldTypeError, MissingRequiredFieldError
from .models import (
    BlockKind,
    BodyType,
    ExecutionMode,
    HttpMethod,
    ImportWarning,
    MetadataBlock,
    NameValuePair,
    ReconstructedRequest,
    ReconstructedRequestGroup,
    RequestBody,
    SourceLocation,
    WarningCategory,
    WarningCode,
    WorkbookItem,
)
from .utils import generate_id

SELECTION_FIELDS = (
    "selectedScenario",
    "selectedAuthorization",
    "selectedCertificate",
    "selectedProxy",
    "selectedData",
)

REQUEST_FIELDS = {
    "id", "name", "url", "method", "test", "headers", "body",
    "queryStringParams", "timeout", "numberOfRedirects", "runs",
    "multiRunExecution", "keepAlive", "acceptInvalidCerts", "mode",
    "referrer", "referrerPolicy", "duplex", *SELECTION_FIELDS,
}

GROUP_FIELDS = {
    "id", "name", "children", "execution", "runs", "multiRunExecution",
    *SELECTION_FIELDS,
}


def json_type(value: Any) -> str:
    """JSON name of a decoded value's type."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


@dataclass
class BuildOutcome:
    entity: WorkbookItem
    warnings: list[ImportWarning] = field(default_factory=list)


class EntityBuilder:
    """Turns raw metadata payloads into reconstructed entities."""

    def __init__(self, preserve_unknown_fields: bool = True, auto_generate_ids: bool = False):
        self.preserve_unknown_fields = preserve_unknown_fields
        self.auto_generate_ids = auto_generate_ids

    def build(self, block: MetadataBlock) -> BuildOutcome:
        """Build the entity a request or group block describes."""
        if block.kind == BlockKind.REQUEST:
            return self.build_request(block.payload, block.source_file, block.line)
        if block.kind == BlockKind.GROUP:
            return self.build_group(block.payload, block.source_file, block.line)
        raise ValueError(f"{block.kind.value} blocks do not describe entities")

    def build_request(self, payload: Any, file: str = "", line: Optional[int] = None) -> BuildOutcome:
        source = SourceLocation(file=file, line=line)
        self._require_object(payload, source)
        warnings: list[ImportWarning] = []

        request_id = self._entity_id(payload, source, warnings)
        name = self._required_string(payload, "name", source)
        url = self._required_string(payload, "url", source)
        method_name = self._required_string(payload, "method", source)
        try:
            method = HttpMethod(method_name.upper())
        except ValueError:
            raise InvalidFieldTypeError(
                "method", f'unsupported HTTP method "{method_name}"',
                file=source.file, line=source.line,
            ) from None

        request = ReconstructedRequest(
            id=request_id, name=name, url=url, method=method, source=source,
        )

        request.test = self._optional(payload, "test", str, source, warnings)
        if payload.get("headers") is not None:
            request.headers = self._pairs(payload["headers"], "headers", source, warnings)
        if payload.get("queryStringParams") is not None:
            request.query_string_params = self._pairs(
                payload["queryStringParams"], "queryStringParams", source, warnings
            )
        if payload.get("body") is not None:
            request.body = self._body(payload["body"], source, warnings)

        timeout = payload.get("timeout")
        if timeout is not None:
            if _is_number(timeout):
                request.timeout = timeout
            else:
                self._drop(warnings, source, "timeout", "number", timeout)
        request.number_of_redirects = self._optional_int(
            payload, "numberOfRedirects", source, warnings
        )
        request.runs = self._optional_int(payload, "runs", source, warnings)
        request.multi_run_execution = self._execution_mode(
            payload, "multiRunExecution", source, warnings
        )
        request.keep_alive = self._optional(payload, "keepAlive", bool, source, warnings)
        request.accept_invalid_certs = self._optional(
            payload, "acceptInvalidCerts", bool, source, warnings
        )
        request.mode = self._optional(payload, "mode", str, source, warnings)
        request.referrer = self._optional(payload, "referrer", str, source, warnings)
        request.referrer_policy = self._optional(payload, "referrerPolicy", str, source, warnings)
        request.duplex = self._optional(payload, "duplex", str, source, warnings)
        request.selections = self._selections(payload, source, warnings)
        request.extra = self._unknown_fields(payload, REQUEST_FIELDS)

        return BuildOutcome(entity=request, warnings=warnings)

    def build_group(self, payload: Any, file: str = "", line: Optional[int] = None) -> BuildOutcome:
        source = SourceLocation(file=file, line=line)
        self._require_object(payload, source)
        warnings: list[ImportWarning] = []

        group = ReconstructedRequestGroup(
            id=self._entity_id(payload, source, warnings),
            name=self._required_string(payload, "name", source),
            source=source,
        )
        group.execution = self._execution_mode(payload, "execution", source, warnings)
        group.runs = self._optional_int(payload, "runs", source, warnings)
        group.multi_run_execution = self._execution_mode(
            payload, "multiRunExecution", source, warnings
        )
        group.selections = self._selections(payload, source, warnings)
        group.extra = self._unknown_fields(payload, GROUP_FIELDS)

        return BuildOutcome(entity=group, warnings=warnings)

    # Required fields

    @staticmethod
    def _require_object(payload: Any, source: SourceLocation) -> None:
        if not isinstance(payload, dict):
            raise InvalidFieldTypeError(
                "<payload>", f"expected a JSON object, got {json_type(payload)}",
                file=source.file, line=source.line,
            )

    def _entity_id(
        self, payload: dict, source: SourceLocation, warnings: list[ImportWarning]
    ) -> str:
        value = payload.get("id")
        if (value is None or value == "") and self.auto_generate_ids:
            generated = generate_id(source.file, source.line or 0)
            warnings.append(ImportWarning(
                file=source.file,
                line=source.line,
                message=f'Missing "id"; generated {generated}',
                category=WarningCategory.METADATA,
                code=WarningCode.GENERATED_ID,
            ))
            return generated
        return self._required_string(payload, "id", source)

    @staticmethod
    def _required_string(payload: dict, name: str, source: SourceLocation) -> str:
        value = payload.get(name)
        if value is None or value == "":
            raise MissingRequiredFieldError(name, file=source.file, line=source.line)
        if not isinstance(value, str):
            raise InvalidFieldTypeError(
                name, f"expected string, got {json_type(value)}",
                file=source.file, line=source.line,
            )
        return value

    # Optional fields

    @staticmethod
    def _drop(
        warnings: list[ImportWarning],
        source: SourceLocation,
        name: str,
        expected: str,
        value: Any,
    ) -> None:
        warnings.append(ImportWarning(
            file=source.file,
            line=source.line,
            message=f'Dropped "{name}": expected {expected}, got {json_type(value)}',
            category=WarningCategory.METADATA,
            code=WarningCode.INVALID_FIELD_TYPE,
        ))

    def _optional(self, payload: dict, name: str, expected: type, source, warnings):
        value = payload.get(name)
        if value is None:
            return None
        if isinstance(value, expected):
            return value
        self._drop(warnings, source, name, json_type(expected()), value)
        return None

    def _optional_int(self, payload: dict, name: str, source, warnings) -> Optional[int]:
        value = payload.get(name)
        if value is None:
            return None
        converted = _as_int(value)
        if converted is None:
            self._drop(warnings, source, name, "integer", value)
        return converted

    def _execution_mode(self, payload: dict, name: str, source, warnings) -> Optional[ExecutionMode]:
        value = payload.get(name)
        if value is None:
            return None
        try:
            return ExecutionMode(value)
        except ValueError:
            self._drop(warnings, source, name, "SEQUENTIAL or CONCURRENT", value)
            return None

    def _selections(self, payload: dict, source, warnings) -> dict[str, Any]:
        selections = {}
        for name in SELECTION_FIELDS:
            value = payload.get(name)
            if value is None:
                continue
            if isinstance(value, dict):
                selections[name] = value
            else:
                self._drop(warnings, source, name, "object", value)
        return selections

    def _unknown_fields(self, payload: dict, known: set[str]) -> dict[str, Any]:
        if not self.preserve_unknown_fields:
            return {}
        return {k: v for k, v in payload.items() if k not in known}

    def _pairs(self, value: Any, name: str, source, warnings) -> Optional[list[NameValuePair]]:
        if not isinstance(value, list):
            self._drop(warnings, source, name, "array", value)
            return None
        pairs = []
        for index, item in enumerate(value):
            pair = to_name_value_pair(item)
            if pair is None:
                self._drop(warnings, source, f"{name}[{index}]", "name/value pair", item)
            else:
                pairs.append(pair)
        return pairs

    # Body

    def _body(self, value: Any, source: SourceLocation, warnings) -> Optional[RequestBody]:
        if not isinstance(value, dict):
            self._drop(warnings, source, "body", "object", value)
            return None

        def mismatch(reason: str) -> InvalidFieldTypeError:
            return InvalidFieldTypeError(
                "body.data", reason, file=source.file, line=source.line
            )

        raw_type = value.get("type")
        try:
            body_type = BodyType(raw_type)
        except ValueError:
            raise InvalidFieldTypeError(
                "body.type", f"unknown body type {raw_type!r}",
                file=source.file, line=source.line,
            ) from None

        data = value.get("data")
        body = RequestBody(type=body_type)

        if body_type == BodyType.NONE:
            if data is not None:
                raise mismatch(f"None body cannot carry {json_type(data)} data")
        elif body_type in (BodyType.TEXT, BodyType.XML):
            if data is not None and not isinstance(data, str):
                raise mismatch(f"{body_type.value} body requires string data, got {json_type(data)}")
            body.data = data
        elif body_type == BodyType.JSON:
            if data is not None and not isinstance(data, (dict, list, str)):
                raise mismatch(f"JSON body requires object, array or string data, got {json_type(data)}")
            body.data = data
        elif body_type == BodyType.FORM:
            if data is not None:
                if not isinstance(data, list):
                    raise mismatch(f"Form body requires an array of name/value pairs, got {json_type(data)}")
                pairs = []
                for index, item in enumerate(data):
                    pair = to_name_value_pair(item)
                    if pair is None:
                        raise mismatch(f"Form body entry {index} is not a name/value pair")
                    pairs.append(pair)
                body.data = pairs
        elif body_type == BodyType.RAW:
            if data is not None:
                _check_raw_data(data, mismatch)
            body.data = data

        formatted = value.get("formatted")
        if formatted is not None:
            if isinstance(formatted, str):
                body.formatted = formatted
            else:
                self._drop(warnings, source, "body.formatted", "string", formatted)

        return body


def _check_raw_data(data: Any, mismatch) -> None:
    if isinstance(data, list):
        if not all(_as_int(b) is not None and 0 <= b <= 255 for b in data):
            raise mismatch("Raw body array must contain byte values 0-255")
        return
    if isinstance(data, str):
        try:
            base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise mismatch(f"Raw body string is not valid base64: {e}") from e
        return
    raise mismatch(f"Raw body requires byte array or base64 string, got {json_type(data)}")


def to_name_value_pair(item: Any) -> Optional[NameValuePair]:
    """A NameValuePair from its JSON form, or None when malformed."""
    if not isinstance(item, dict):
        return None
    name = item.get("name")
    value = item.get("value", "")
    disabled = item.get("disabled")
    if not isinstance(name, str) or not name:
        return None
    if not isinstance(value, str):
        return None
    if disabled is not None and not isinstance(disabled, bool):
        return None
    return NameValuePair(name=name, value=value, disabled=disabled)
