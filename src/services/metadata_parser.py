"""
SIP-016 metadata normalization.

Turns raw metadata JSON (the default payload plus any localized payloads it declares) into
records ready to be stored. Localized payloads fall back to the default for `name`, `description`,
`image` and for every property they do not override; attributes are never merged.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.utils.exceptions import MalformedMetadata

# Keys seen in the wild for the image, in order of preference. Only `image` is SIP-016.
IMAGE_KEYS = ("image", "imageUrl", "image_url", "image_uri", "image_canonical_uri")


@dataclass
class Localization:
    uri: str
    default: str
    locales: List[str]


@dataclass
class RawMetadataLocale:
    payload: Dict[str, Any]
    uri: str
    locale: Optional[str] = None
    is_default: bool = False


@dataclass
class ParsedAttribute:
    trait_type: str
    value: Any
    display_type: Optional[str] = None


@dataclass
class ParsedMetadata:
    uri: str
    name: str
    locale: Optional[str] = None
    declared_locale: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    attributes: List[ParsedAttribute] = field(default_factory=list)
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_default(self) -> bool:
        return self.locale is None


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def get_localization(payload: Dict[str, Any]) -> Optional[Localization]:
    """The `localization` block of a payload, or None when it is missing or malformed."""
    raw = payload.get("localization")
    if not isinstance(raw, dict):
        return None
    uri, default, locales = raw.get("uri"), raw.get("default"), raw.get("locales")
    if not isinstance(uri, str) or not isinstance(default, str) or not isinstance(locales, list):
        return None
    if not all(isinstance(locale, str) for locale in locales):
        return None
    return Localization(uri=uri, default=default, locales=locales)


def _image(payload: Dict[str, Any]) -> Optional[str]:
    for key in IMAGE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _attributes(payload: Dict[str, Any]) -> List[ParsedAttribute]:
    raw = payload.get("attributes")
    if not isinstance(raw, list):
        return []
    attributes = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        trait_type, value = item.get("trait_type"), item.get("value")
        if not isinstance(trait_type, str) or not trait_type or not _present(value):
            continue
        display_type = item.get("display_type")
        attributes.append(
            ParsedAttribute(
                trait_type=trait_type,
                value=value,
                display_type=display_type if isinstance(display_type, str) else None,
            )
        )
    return attributes


def _properties(payload: Dict[str, Any]) -> Dict[str, Any]:
    raw = payload.get("properties")
    if not isinstance(raw, dict):
        return {}
    return {str(key): value for key, value in raw.items() if key and _present(value)}


def parse_metadata_locales(raw_locales: List[RawMetadataLocale]) -> List[ParsedMetadata]:
    """
    Normalize fetched payloads, default first.

    Raises MalformedMetadata when the default payload has no name, since SIP-016 requires one and
    a token must end up with a default record. Localized payloads that cannot get a name from
    either themselves or the default are skipped.
    """
    if not raw_locales or not raw_locales[0].is_default:
        raise MalformedMetadata("Default metadata payload is missing")

    parsed: List[ParsedMetadata] = []
    default: Optional[ParsedMetadata] = None
    for raw in raw_locales:
        payload = raw.payload
        name = _text(payload.get("name")) or (default.name if default else None)
        if not name:
            if raw.is_default:
                raise MalformedMetadata(f"Metadata has no name: {raw.uri}")
            continue

        description = _text(payload.get("description"))
        image = _image(payload)
        properties = _properties(payload)
        if default is not None:
            description = description if description is not None else default.description
            image = image or default.image
            properties = {**default.properties, **properties}

        record = ParsedMetadata(
            uri=raw.uri,
            name=name,
            locale=None if raw.is_default else raw.locale,
            declared_locale=raw.locale if raw.is_default else None,
            description=description,
            image=image,
            attributes=_attributes(payload),
            properties=properties,
        )
        parsed.append(record)
        if raw.is_default:
            default = record
    return parsed
