"""Wire models shared by the upstream provider and the HTTP facade.

Field names follow the AdGuard Home control API. Upstream payloads carry more than we
read (per-day schedule windows, service groups), so those models keep unknown keys and
hand them back unchanged on update.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class BaseModelAllowExtra(BaseModel):
    model_config = ConfigDict(extra="allow")


class Schedule(BaseModelAllowExtra):
    time_zone: str = ""


class ServiceConfig(BaseModelAllowExtra):
    ids: List[str] = Field(default_factory=list)
    schedule: Schedule = Field(default_factory=Schedule)


class BlockedService(BaseModelAllowExtra):
    id: str
    name: str = ""
    icon_svg: str = ""
    rules: List[str] = Field(default_factory=list)


class AllBlockedServicesResponse(BaseModelAllowExtra):
    blocked_services: List[BlockedService] = Field(default_factory=list)


class ResetServiceMinConfig(BaseModel):
    """Body of `updateblockedservicesmin`: a configuration plus minutes until reset."""

    model_config = ConfigDict(populate_by_name=True)

    service_config: ServiceConfig = Field(default_factory=ServiceConfig, alias="config")
    # 0 (or missing) means "no reset timer".
    reset_after_min: int = 0


class ResetServiceDateTimeConfig(BaseModel):
    """Body of `updateblockedservicesdatetime`; `reset_date_time` is ISO 8601."""

    model_config = ConfigDict(populate_by_name=True)

    service_config: ServiceConfig = Field(default_factory=ServiceConfig, alias="config")
    reset_date_time: str = ""
