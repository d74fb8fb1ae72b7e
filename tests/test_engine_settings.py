"""
Brief: Tests for ResolutionEngine.from_settings adapter wiring.

Inputs:
  - None (pytest harness)

Outputs:
  - None (pytest assertions).
"""

from ensresolve.config.settings import load_settings
from ensresolve.engine import ResolutionEngine
from ensresolve.index import InMemoryIndex, SqliteIndexReader
from ensresolve.names import namehash
from ensresolve.rpc import HttpGatewayClient, Web3ContractCaller
from fakes import VITALIK, account


def test_memory_index_from_snapshot(tmp_path) -> None:
    snapshot = tmp_path / "index.yaml"
    snapshot.write_text(
        "freshness: {1: 2}\n"
        "resolvers:\n"
        f"  - {{name: vitalik.eth, resolver: '{account('11').address}'}}\n"
        "reverse_names:\n"
        f"  - {{address: '{VITALIK}', name: vitalik.eth}}\n",
        encoding="utf-8",
    )
    settings = load_settings(
        {
            "index": {"type": "memory", "snapshot": str(snapshot)},
            "chains": [{"chain_id": 1, "rpc_url": "http://127.0.0.1:8545"}],
            "label_healer": {"labels": ["vitalik"]},
        }
    )

    with ResolutionEngine.from_settings(settings) as engine:
        assert isinstance(engine.index, InMemoryIndex)
        assert engine.index.get_freshness(1) == 2.0
        assert engine.index.get_resolver_assignment(namehash("vitalik.eth"), chain_id=1) == account("11")
        assert isinstance(engine.executor._caller, Web3ContractCaller)
        assert isinstance(engine.executor._gateway, HttpGatewayClient)
        assert engine.executor._label_healer is not None


def test_sqlite_index_selected(tmp_path) -> None:
    settings = load_settings({"index": {"type": "sqlite", "path": str(tmp_path / "i.sqlite")}})
    with ResolutionEngine.from_settings(settings) as engine:
        assert isinstance(engine.index, SqliteIndexReader)
        assert engine.executor._label_healer is None
