"""Entity registries and the role oracle built on them.

File format (json), one file per kind and version, e.g. `infrastructure.v3.json`:
{
  "version": "v3",
  "kind": "infrastructure",
  "addresses": ["<pool program id>", ...],
  "meta": {"source": "lp finder", "note": "manual curation"}
}

Infrastructure registries hold liquidity-pool and program addresses; the
active participant registry holds wallets seen trading on a DEX. Both are
treated as static sets for the duration of an analysis window.
"""
from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Iterable, Optional, Set
from loguru import logger

def _empty() -> Dict[str, Any]:
    return {"version": None, "addresses": set(), "meta": {}}


def _select_latest_file(dir_path: str, kind: str) -> Optional[Path]:
    """`<kind>.v<N>.json` with the highest N, or None."""
    pattern = re.compile(rf"^{re.escape(kind)}\.v(\d+)\.json$")
    root = Path(dir_path)
    if not root.is_dir():
        return None
    versions = {}
    for p in root.iterdir():
        m = pattern.match(p.name)
        if m:
            versions[int(m.group(1))] = p
    return versions[max(versions)] if versions else None


def load_latest_registry(dir_path: Optional[str], kind: str) -> Dict[str, Any]:
    path = _select_latest_file(dir_path, kind) if dir_path else None
    if path is None:
        logger.warning(f"registry.missing kind={kind} dir={dir_path}")
        return _empty()
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"registry.load_failed path={path} err={e}")
        return _empty()
    addrs = {str(a) for a in data.get('addresses') or []}
    version = data.get('version') or path.name.split('.')[-2]
    logger.info(f"registry.loaded kind={kind} version={version} addresses={len(addrs)}")
    return {"version": version, "addresses": addrs, "meta": data.get('meta') or {}, "_path": str(path)}


@dataclass
class Registry:
    dir_path: Optional[str]
    kind: str
    _last: Optional[Dict[str, Any]] = None

    def _ensure(self) -> Dict[str, Any]:
        if not self._last:
            self._last = load_latest_registry(self.dir_path, self.kind)
        return self._last

    def get_addresses(self) -> Set[str]:
        return set(self._ensure().get('addresses') or [])

    def version(self) -> Optional[str]:
        return self._ensure().get('version')


class RoleOracle:
    """Set-membership predicates used to classify wallets.

    Subclasses provide the two address sets; an address in neither is a
    passive holder.
    """

    def infrastructure_addresses(self) -> Set[str]:
        raise NotImplementedError()

    def active_participant_addresses(self) -> Set[str]:
        raise NotImplementedError()

    def is_infrastructure(self, entity_id: str) -> bool:
        return entity_id in self.infrastructure_addresses()

    def is_active_trader(self, entity_id: str) -> bool:
        return entity_id in self.active_participant_addresses()


@dataclass
class StaticRoleOracle(RoleOracle):
    infrastructure: Set[str] = field(default_factory=set)
    active_participants: Set[str] = field(default_factory=set)

    @classmethod
    def from_iterables(cls, infrastructure: Iterable[str] = (), active_participants: Iterable[str] = ()) -> "StaticRoleOracle":
        return cls(set(map(str, infrastructure)), set(map(str, active_participants)))

    def infrastructure_addresses(self) -> Set[str]:
        return set(self.infrastructure)

    def active_participant_addresses(self) -> Set[str]:
        return set(self.active_participants)


class RegistryRoleOracle(RoleOracle):
    """Role oracle reading the latest versioned registry file of each kind."""

    def __init__(self, dir_path: Optional[str], infrastructure_kind: str = 'infrastructure',
                 active_participant_kind: str = 'active_participant'):
        self.infrastructure = Registry(dir_path, infrastructure_kind)
        self.active_participants = Registry(dir_path, active_participant_kind)

    @classmethod
    def from_settings(cls, registry_settings) -> "RegistryRoleOracle":
        return cls(registry_settings.dir_path,
                   registry_settings.infrastructure_kind,
                   registry_settings.active_participant_kind)

    def infrastructure_addresses(self) -> Set[str]:
        return self.infrastructure.get_addresses()

    def active_participant_addresses(self) -> Set[str]:
        return self.active_participants.get_addresses()

    def versions(self) -> Dict[str, Optional[str]]:
        return {self.infrastructure.kind: self.infrastructure.version(),
                self.active_participants.kind: self.active_participants.version()}


__all__ = ['load_latest_registry', 'Registry', 'RoleOracle', 'StaticRoleOracle', 'RegistryRoleOracle']
