"""Chain Registry: the static table of monitored chains.

Each entry names the chain, its USDC contract, the HyperSync endpoint that
serves it and the nominal block time used to pace the radar sweep:

{
  "chain_id": 8453,
  "name": "BASE",
  "color": "#0052ff",
  "contract_address": "0x...",
  "endpoint": "https://8453.hypersync.xyz",
  "block_time_sec": 2
}

`DEFAULT_CHAINS` is the built-in table; `ChainRegistry` turns validated
settings into immutable `ChainDescriptor`s and answers lookups. The registry
is built once at start-up and never mutated afterwards.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, Iterable, List, Optional
from loguru import logger

from stable_radar.core.custom_types import ChainDescriptor, ChainId


DEFAULT_CHAINS: Dict[str, Dict[str, Any]] = {
    'ethereum': {
        'chain_id': 1,
        'name': 'ETHEREUM',
        'color': '#00ff00',
        'contract_address': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48',
        'endpoint': 'https://1.hypersync.xyz',
        'block_time_sec': 12,
        'explorer_url': 'https://etherscan.io/tx/',
    },
    'base': {
        'chain_id': 8453,
        'name': 'BASE',
        'color': '#0052ff',
        'contract_address': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
        'endpoint': 'https://8453.hypersync.xyz',
        'block_time_sec': 2,
        'explorer_url': 'https://basescan.org/tx/',
    },
    'polygon': {
        'chain_id': 137,
        'name': 'POLYGON',
        'color': '#8247e5',
        'contract_address': '0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359',
        'endpoint': 'https://137.hypersync.xyz',
        'block_time_sec': 2,
        'explorer_url': 'https://polygonscan.com/tx/',
    },
    # Disabled by default; flip `enabled` in settings.yaml to monitor them.
    'arbitrum': {
        'chain_id': 42161,
        'name': 'ARBITRUM',
        'color': '#28a0f0',
        'contract_address': '0xaf88d065e77c8cC2239327C5EDb3A432268e5831',
        'endpoint': 'https://42161.hypersync.xyz',
        'block_time_sec': 0.25,
        'explorer_url': 'https://arbiscan.io/tx/',
        'enabled': False,
    },
    'optimism': {
        'chain_id': 10,
        'name': 'OPTIMISM',
        'color': '#ff0420',
        'contract_address': '0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85',
        'endpoint': 'https://10.hypersync.xyz',
        'block_time_sec': 2,
        'explorer_url': 'https://optimistic.etherscan.io/tx/',
        'enabled': False,
    },
    'sonic': {
        'chain_id': 146,
        'name': 'SONIC',
        'color': '#00d4ff',
        'contract_address': '0x29219dd400f2Bf60E5a23d13Be72B486D4038894',
        'endpoint': 'https://146.hypersync.xyz',
        'block_time_sec': 1,
        'explorer_url': 'https://sonicscan.org/tx/',
        'enabled': False,
    },
}


def descriptor_from_config(key: str, cfg: Any) -> ChainDescriptor:
    """Build a descriptor from a `ChainSettings` model or a plain dict."""
    get = cfg.get if isinstance(cfg, dict) else (lambda k, d=None: getattr(cfg, k, d))
    return ChainDescriptor(
        chain_id=int(get('chain_id')),
        key=key,
        display_name=get('name') or key.upper(),
        color=get('color', '#00ff00'),
        contract_address=get('contract_address'),
        endpoint=str(get('endpoint')).rstrip('/'),
        block_time_sec=float(get('block_time_sec')),
        explorer_url=get('explorer_url', '') or '',
        token_decimals=int(get('token_decimals', 6)),
        enabled=bool(get('enabled', True)),
    )


@dataclass
class ChainRegistry:
    chains: Dict[ChainId, ChainDescriptor] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> "ChainRegistry":
        chains: Dict[ChainId, ChainDescriptor] = {}
        for key, cfg in settings.chains.items():
            desc = descriptor_from_config(key, cfg)
            chains[desc.chain_id] = desc
        logger.info("Chain registry loaded: {}", ", ".join(f"{d.display_name}({d.chain_id})" for d in chains.values()))
        return cls(chains)

    @classmethod
    def default(cls) -> "ChainRegistry":
        return cls({d.chain_id: d for d in (descriptor_from_config(k, v) for k, v in DEFAULT_CHAINS.items())})

    def get(self, chain_id: ChainId) -> Optional[ChainDescriptor]:
        return self.chains.get(int(chain_id))

    def require(self, chain_id: ChainId) -> ChainDescriptor:
        desc = self.get(chain_id)
        if desc is None:
            raise KeyError(f"Unknown chain id {chain_id}")
        return desc

    def by_key(self, key: str) -> Optional[ChainDescriptor]:
        key = key.lower()
        return next((d for d in self.chains.values() if d.key == key), None)

    def enabled(self) -> List[ChainDescriptor]:
        return [d for d in self.chains.values() if d.enabled]

    def select(self, networks: Optional[Iterable[ChainId]] = None) -> List[ChainDescriptor]:
        """Chains to monitor: the explicit selection if given, else every enabled chain.

        An explicit selection may include chains disabled by default.
        """
        wanted = [int(n) for n in (networks or [])]
        if not wanted:
            return self.enabled()
        out = []
        for cid in wanted:
            desc = self.get(cid)
            if desc is None:
                logger.warning("Ignoring unknown chain id {} in network selection", cid)
                continue
            out.append(desc)
        return out

    def __contains__(self, chain_id) -> bool:
        try:
            return int(chain_id) in self.chains
        except (TypeError, ValueError):
            return False

    def __len__(self) -> int:
        return len(self.chains)


__all__ = ['DEFAULT_CHAINS', 'ChainRegistry', 'descriptor_from_config']
