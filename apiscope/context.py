# ABOUTME: Per-request context passed explicitly through the query pipeline
# ABOUTME: Carries the request id, caller identity, its ability, and the resource registry

from dataclasses import dataclass

from apiscope.models.database import APIKey
from apiscope.services.authorization import Ability
from apiscope.services.resources import ResourceRegistry


@dataclass(frozen=True)
class RequestContext:
    request_uuid: str
    url: str
    api_key: APIKey
    ability: Ability
    registry: ResourceRegistry
