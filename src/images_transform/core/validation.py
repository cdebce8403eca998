"""Turn a loosely typed options payload into a ProcessingPlan."""

import json
from typing import Any, Dict, Mapping, Union

from pydantic import ValidationError

from .exceptions import OptionsValidationError
from .logging_config import get_logger
from .models import ProcessingPlan

RawOptions = Union[None, str, bytes, Mapping[str, Any]]

# Top level resize fields accepted for compatibility with the flat wire format
FLAT_RESIZE_FIELDS = {
    "width": "width",
    "height": "height",
    "maintainAspectRatio": "maintainAspectRatio",
    "maintain_aspect_ratio": "maintainAspectRatio",
}
FORMAT_FIELDS = {"format", "targetFormat", "target_format"}


def _load_payload(raw: RawOptions) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise OptionsValidationError("Options are not valid UTF-8", reason="MalformedPayload") from e
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise OptionsValidationError(f"Options are not valid JSON: {e.msg}", reason="MalformedPayload") from e
    if not isinstance(raw, Mapping):
        raise OptionsValidationError(
            f"Options must be an object, got {type(raw).__name__}", reason="MalformedPayload"
        )
    return dict(raw)


def _fold_flat_resize(payload: Dict[str, Any]) -> Dict[str, Any]:
    flat = {key: payload.pop(key) for key in list(payload) if key in FLAT_RESIZE_FIELDS}
    if not flat:
        return payload
    if payload.get("resize") is not None:
        field = sorted(flat)[0]
        raise OptionsValidationError(
            f"{field}: cannot be combined with a resize object",
            field=field,
            reason="AmbiguousResize",
        )
    payload["resize"] = {FLAT_RESIZE_FIELDS[key]: value for key, value in flat.items()}
    return payload


def _first_violation(exc: ValidationError) -> OptionsValidationError:
    error = exc.errors(include_url=False)[0]
    loc = [str(part) for part in error["loc"]]
    field = ".".join(loc) if loc else "options"
    reason = "InvalidFormat" if loc and loc[0] in FORMAT_FIELDS else "InvalidValue"
    return OptionsValidationError(f"{field}: {error['msg']}", field=field, reason=reason)


def validate_options(raw: RawOptions) -> ProcessingPlan:
    """
    Validate a raw options payload into an immutable ProcessingPlan.

    Any single violation rejects the whole payload. No field is required:
    an empty payload yields a no-op plan.

    Args:
        raw: Parsed mapping, JSON text or JSON bytes

    Returns:
        The validated ProcessingPlan

    Raises:
        OptionsValidationError: On the first violation found
    """
    logger = get_logger("validation")
    payload = _fold_flat_resize(_load_payload(raw))

    try:
        plan = ProcessingPlan.model_validate(payload)
    except ValidationError as e:
        violation = _first_violation(e)
        logger.info(f"Rejected options: {violation}")
        raise violation from e

    logger.debug(f"Validated plan: {plan.model_dump(exclude_defaults=True)}")
    return plan


class OptionsValidator:
    """Object form of validate_options for dependency injection."""

    def validate(self, raw: RawOptions) -> ProcessingPlan:
        return validate_options(raw)
