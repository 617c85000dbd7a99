from unittest.mock import MagicMock

import pytest

ADDR_A = "0x" + "ab" * 20
ADDR_B = "0x" + "de" * 20


class FakePlugin:
    """Stand-in for EthBalancePlugin with canned values"""

    def __init__(self, values, graphs, prefix="ethereum"):
        self.values = values
        self.graphs = graphs
        self.prefix = prefix

    def fetch_metrics(self):
        if isinstance(self.values, Exception):
            raise self.values
        return dict(self.values)

    def graph_definition(self):
        return self.graphs

    def metric_key_prefix(self):
        return self.prefix


@pytest.fixture
def web3():
    w3 = MagicMock()
    w3.eth.block_number = 123
    return w3
