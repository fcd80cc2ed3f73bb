"""Deterministic cache keys for model requests."""

import hashlib
import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from consensus.errors import FingerprintError

# Optional fields that are always present in the canonical form, as null when unset
_OPTIONAL_FIELDS = ("system_prompt", "temperature", "max_tokens", "round_index")


@dataclass(frozen=True)
class FingerprintInput:
    models: frozenset[str] | tuple[str, ...] | list[str]
    prompt: str
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    round_index: int | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "models": list(self.models),
            "prompt": self.prompt,
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "round_index": self.round_index,
            "extra": dict(self.extra),
        }


def _normalize(value: Any, path: str) -> Any:
    """Recursively sort mapping keys and reject anything JSON cannot represent exactly."""
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise FingerprintError(f"Non-finite number at {path}: {value!r}")
        return value
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key in sorted(value, key=lambda k: (not isinstance(k, str), str(k))):
            if not isinstance(key, str):
                raise FingerprintError(f"Mapping key at {path} is not a string: {key!r}")
            out[key] = _normalize(value[key], f"{path}.{key}")
        return out
    if isinstance(value, (set, frozenset)):
        items = [_normalize(v, f"{path}[]") for v in value]
        try:
            return sorted(items)
        except TypeError as exc:
            raise FingerprintError(f"Unorderable set at {path}") from exc
    if isinstance(value, (list, tuple)):
        return [_normalize(v, f"{path}[{i}]") for i, v in enumerate(value)]
    raise FingerprintError(f"Unserializable value at {path}: {type(value).__name__}")


def canonicalize(request: FingerprintInput | Mapping[str, Any]) -> str:
    """Return the canonical, whitespace-free JSON form of ``request``."""
    raw = request.as_dict() if isinstance(request, FingerprintInput) else dict(request)

    models = raw.get("models")
    if models is not None:
        if isinstance(models, str) or not isinstance(models, (list, tuple, set, frozenset)):
            raise FingerprintError(f"models must be a collection of identifiers, got {type(models).__name__}")
        if not all(isinstance(m, str) for m in models):
            raise FingerprintError("model identifiers must be strings")
        raw["models"] = sorted(set(models))

    for name in _OPTIONAL_FIELDS:
        raw.setdefault(name, None)

    normalized = _normalize(raw, "$")
    try:
        return json.dumps(
            normalized,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise FingerprintError(f"Cannot serialize request: {exc}") from exc


def fingerprint(request: FingerprintInput | Mapping[str, Any], digest: bool = False) -> str:
    """Stable key for ``request``, independent of model order and mapping key order.

    With ``digest=True`` the canonical text is replaced by its SHA-256 hex digest,
    which keeps keys short for file and network stores.
    """
    canonical = canonicalize(request)
    if digest:
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return canonical
