from web3 import Web3


def wei_to_ether(wei: int) -> float:
    """Convert a wei balance to ether.

    ``Web3.from_wei`` divides in a high precision decimal context, so large
    balances keep every digit until the final narrowing to float.
    """
    return float(Web3.from_wei(wei, 'ether'))
