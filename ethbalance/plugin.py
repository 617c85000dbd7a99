import logging
from typing import Dict, List
from web3 import Web3
from .config import LabeledAddress, DEFAULT_PREFIX
from .helper import Graph, Metric
from .units import wei_to_ether

logger = logging.getLogger(__name__)


class RPCConnectionError(ConnectionError):
    pass


class BalanceQueryError(RuntimeError):
    def __init__(self, address: LabeledAddress, cause: Exception):
        super().__init__(f"Failed to get balance for {address.name}: {cause}")
        self.address = address


def connect(rpc_url: str) -> Web3:
    """Open an HTTP Web3 handle and verify it answers eth_blockNumber"""
    if not rpc_url:
        raise RPCConnectionError("No RPC endpoint configured")

    logger.info(f"Attempting to connect to {rpc_url}")
    try:
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        block_number = w3.eth.block_number
    except Exception as e:
        logger.error(f"Error type: {type(e).__name__}")
        raise RPCConnectionError(f"Failed to connect to {rpc_url}: {e}") from e

    logger.info(f"Successfully connected to {rpc_url} (block: {block_number})")
    return w3


class EthBalancePlugin:
    def __init__(self, addresses: List[LabeledAddress], web3: Web3, prefix: str = DEFAULT_PREFIX):
        self.addresses = tuple(addresses)
        self.web3 = web3
        self.prefix = prefix

    def fetch_metrics(self) -> Dict[str, float]:
        ret = {}
        for a in self.addresses:
            try:
                balance = self.web3.eth.get_balance(a.address, "latest")
                ret[a.name] = wei_to_ether(balance)
            except Exception as e:
                raise BalanceQueryError(a, e) from e
        logger.info(f"Fetched {len(ret)} balances")
        return ret

    def graph_definition(self) -> Dict[str, Graph]:
        metrics = [Metric(name=a.name, label=a.label) for a in self.addresses]
        return {
            "balance": Graph(label="Ether", unit="float", metrics=metrics),
        }

    def metric_key_prefix(self) -> str:
        return self.prefix
