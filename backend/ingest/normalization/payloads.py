"""
Raw provider payloads, tagged by source.

Provider bodies are untyped JSON. They are wrapped here at the boundary so the
mappers can dispatch on type, and nothing downstream of the normalizer ever
touches provider field names.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from shared.models.enums import ProviderName, Sport


@dataclass(frozen=True)
class CricApiMatchPayload:
    """One match object from CricAPI (currentMatches, matches, match_info)."""
    body: Mapping[str, Any]

    @property
    def provider(self) -> ProviderName:
        return ProviderName.CRICAPI

    @property
    def sport(self) -> Sport:
        return Sport.CRICKET


@dataclass(frozen=True)
class ApiSportsGamePayload:
    """One fixture/game object from an API-Sports host."""
    sport: Sport
    body: Mapping[str, Any]

    @property
    def provider(self) -> ProviderName:
        return ProviderName.APISPORTS


RawMatchPayload = Union[CricApiMatchPayload, ApiSportsGamePayload]


def wrap_match_payload(raw: Any, sport: Sport) -> Optional[RawMatchPayload]:
    """Tag a decoded JSON object by the provider that serves ``sport``. Non-objects give None."""
    if isinstance(raw, (CricApiMatchPayload, ApiSportsGamePayload)):
        return raw
    if not isinstance(raw, Mapping):
        return None
    if sport is Sport.CRICKET:
        return CricApiMatchPayload(body=raw)
    return ApiSportsGamePayload(sport=sport, body=raw)
