"""Typed settings built from a validated configuration mapping.

Brief:
  parse_config_file() returns a plain mapping; load_settings() turns it into
  pydantic models with defaults filled in. The engine, index and chain
  adapters are configured from these models only.

Config layout (all sections optional):

  logging: {level, stderr, file, syslog}
  engine:
    root_chain_id: 1
    acceleration: {enabled: true, max_lag_seconds: 60}
    timeouts: {call_ms: 3000, gateway_ms: 5000}
    workers: {calls: 16, chains: 4}
    extended_resolver_cache: {ttl_seconds: 300, max_entries: 4096}
    primary_name_chain_ids: [1, 10, 8453, ...]
    known_resolvers:
      - {chain_id, address, behavior, target_chain_id}
  chains:
    - {chain_id, rpc_url, request_timeout_seconds}
  index: {type: memory|sqlite, path, snapshot}
  label_healer: {labels: [...]}
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from ..acceleration import KnownResolver, ResolverBehavior, ResolverPatternTable

DEFAULT_PRIMARY_NAME_CHAIN_IDS = [1, 10, 8453, 42161, 59144, 534352]


class AccelerationSettings(BaseModel):
    """Brief: Acceleration policy.

    Inputs:
      - enabled: When False, every request resolves live.
      - max_lag_seconds: Maximum index lag at which indexed records are trusted.
    """

    enabled: bool = True
    max_lag_seconds: float = Field(default=60.0, ge=0)


class TimeoutSettings(BaseModel):
    call_ms: int = Field(default=3000, gt=0)
    gateway_ms: int = Field(default=5000, gt=0)


class WorkerSettings(BaseModel):
    calls: int = Field(default=16, ge=1)
    chains: int = Field(default=4, ge=1)


class ExtendedResolverCacheSettings(BaseModel):
    ttl_seconds: float = Field(default=300.0, gt=0)
    max_entries: int = Field(default=4096, ge=1)


class KnownResolverSettings(BaseModel):
    chain_id: int
    address: str
    behavior: ResolverBehavior
    target_chain_id: Optional[int] = None

    def to_known_resolver(self) -> KnownResolver:
        return KnownResolver(
            chain_id=self.chain_id,
            address=self.address,
            behavior=self.behavior,
            target_chain_id=self.target_chain_id,
        )


class EngineSettings(BaseModel):
    """Brief: Engine policy and resources.

    Inputs:
      - root_chain_id: Chain whose registry anchors forward resolution.
      - acceleration, timeouts, workers, extended_resolver_cache: see models.
      - primary_name_chain_ids: Chains queried by resolve_primary_names().
      - known_resolvers: Resolver pattern table entries.
    """

    root_chain_id: int = 1
    acceleration: AccelerationSettings = Field(default_factory=AccelerationSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    workers: WorkerSettings = Field(default_factory=WorkerSettings)
    extended_resolver_cache: ExtendedResolverCacheSettings = Field(
        default_factory=ExtendedResolverCacheSettings
    )
    primary_name_chain_ids: List[int] = Field(
        default_factory=lambda: list(DEFAULT_PRIMARY_NAME_CHAIN_IDS)
    )
    known_resolvers: List[KnownResolverSettings] = Field(default_factory=list)

    class Config:
        extra = "ignore"

    def pattern_table(self) -> ResolverPatternTable:
        return ResolverPatternTable(r.to_known_resolver() for r in self.known_resolvers)


class ChainSettings(BaseModel):
    chain_id: int
    rpc_url: str
    request_timeout_seconds: float = Field(default=10.0, gt=0)


class IndexSettings(BaseModel):
    """Brief: Index adapter selection.

    Inputs:
      - type: 'memory' (optionally loaded from a YAML/JSON snapshot) or
        'sqlite' (read-only database at path).
      - path: SQLite database path (required for 'sqlite').
      - snapshot: Snapshot file for 'memory'.
    """

    type: Literal["memory", "sqlite"] = "memory"
    path: Optional[str] = None
    snapshot: Optional[str] = None


class LabelHealerSettings(BaseModel):
    labels: List[str] = Field(default_factory=list)


class Settings(BaseModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    chains: List[ChainSettings] = Field(default_factory=list)
    index: IndexSettings = Field(default_factory=IndexSettings)
    label_healer: LabelHealerSettings = Field(default_factory=LabelHealerSettings)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "ignore"

    def rpc_urls(self) -> Dict[int, str]:
        return {c.chain_id: c.rpc_url for c in self.chains}


def load_settings(cfg: Optional[Mapping[str, Any]]) -> Settings:
    """Brief: Build Settings from a validated configuration mapping.

    Inputs:
      - cfg: Mapping returned by parse_config_file() (or None for defaults).

    Outputs:
      - Settings.

    Raises:
      - ValueError: When the mapping does not fit the settings models, or the
        index section is inconsistent.

    Example:
      >>> load_settings({}).engine.acceleration.max_lag_seconds
      60.0
    """

    data = {k: v for k, v in dict(cfg or {}).items() if v is not None}
    try:
        settings = Settings(**data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    if settings.index.type == "sqlite" and not settings.index.path:
        raise ValueError("index.path is required when index.type is 'sqlite'")
    try:
        settings.engine.pattern_table()
    except ValueError as exc:
        raise ValueError(f"Invalid engine.known_resolvers: {exc}") from exc
    return settings
