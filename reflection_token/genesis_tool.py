"""
Genesis Deployment Tool

Deploys the reflection token, its reference token and the exchange pair from
a configuration file, then writes a msgpack snapshot of the resulting state.
This keeps the launch parameters (fees, limits, initial liquidity and
pre-funded holders) in one auditable file.
"""
import json
import argparse
from pathlib import Path
import msgpack
from cryptography.hazmat.primitives import serialization

from reflection_token.config import Config
from reflection_token.crypto import generate_key_pair, serialize_public_key, public_key_to_address
from reflection_token.router import InProcessRouter, StableToken
from reflection_token.token import ReflectionToken


def deploy(genesis: dict) -> tuple[ReflectionToken, StableToken, InProcessRouter]:
    """
    Deploy the token stack described by a genesis configuration.

    Args:
        genesis (dict): Parsed genesis configuration.

    Returns:
        The deployed token, reference token and router.
    """
    owner = bytes.fromhex(genesis['owner'])
    config = Config.from_dict(genesis.get('token_config', {}))

    reference_info = genesis.get('reference_token', {})
    reference = StableToken(
        owner,
        name=reference_info.get('name', "Binance USD"),
        symbol=reference_info.get('symbol', "BUSD"),
        decimals=reference_info.get('decimals', 18),
    )
    router = InProcessRouter(owner)
    token = ReflectionToken(owner, config=config, router=router, reference_token=reference)
    token_unit = 10 ** token.decimals
    reference_unit = 10 ** reference.decimals

    # --- 1. Seed the pair with the owner's initial liquidity ---
    liquidity = genesis.get('initial_liquidity')
    if liquidity:
        token_amount = int(liquidity['tokens']) * token_unit
        reference_amount = int(liquidity['reference']) * reference_unit
        reference.mint(owner, owner, reference_amount)
        token.approve(owner, router.address, token_amount)
        reference.approve(owner, router.address, reference_amount)
        _, _, minted = router.add_liquidity(
            owner, token.address, reference.address,
            token_amount, reference_amount, 0, 0, owner,
            router.clock() + config.liquidity.deadline_seconds,
        )
        print(f"Seeded pair {token.pair_address.hex()} with {minted} pool shares.")

    # --- 2. Fund initial holders ---
    for account_info in genesis.get('pre_funded_accounts', []):
        address = bytes.fromhex(account_info['address'])
        token.transfer(owner, address, int(account_info['balance']) * token_unit)
        if account_info.get('balance_reference'):
            reference.mint(owner, address, int(account_info['balance_reference']) * reference_unit)
    print(f"Funded {len(genesis.get('pre_funded_accounts', []))} accounts.")

    # --- 3. Exclusions ---
    for address_hex in genesis.get('excluded_from_fee', []):
        token.exclude_from_fee(owner, bytes.fromhex(address_hex))
    for address_hex in genesis.get('excluded_from_reward', []):
        token.exclude_from_reward(owner, bytes.fromhex(address_hex))
    print(
        f"Applied {len(genesis.get('excluded_from_fee', []))} fee and "
        f"{len(genesis.get('excluded_from_reward', []))} reward exclusions."
    )

    return token, reference, router


def snapshot(token: ReflectionToken, reference: StableToken, router: InProcessRouter) -> bytes:
    """Serialize the deployed stack to msgpack."""
    state = {
        'token': token.to_dict(),
        'reference_token': {
            'name': reference.name,
            'symbol': reference.symbol,
            'decimals': reference.decimals,
            'address': reference.address.hex(),
            'balances': {k.hex(): str(v) for k, v in reference.balances.items()},
        },
        'pairs': {
            address.hex(): {
                'token0': pair.token0.hex(),
                'token1': pair.token1.hex(),
                **pair.to_dict(),
            }
            for address, pair in router.pairs.items()
        },
    }
    return msgpack.packb(state, use_bin_type=True)


def create_genesis_snapshot(config_path: str, output_path: str) -> bool:
    """
    Deploys the token stack and writes its genesis snapshot.

    Args:
        config_path (str): Path to the genesis configuration JSON file.
        output_path (str): Path for the msgpack snapshot.
    """
    print(f"Loading genesis configuration from: {config_path}")
    with open(config_path, 'r') as f:
        genesis = json.load(f)

    output = Path(output_path)
    if output.exists():
        print(f"Error: Output path '{output}' already exists. Please remove it first.")
        return False

    token, reference, router = deploy(genesis)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(snapshot(token, reference, router))

    print("\nGenesis deployment created successfully!")
    print(f"  - Token: {token.symbol} at {token.address.hex()}")
    print(f"  - Pair: {token.pair_address.hex()}")
    for key, value in token.get_stats().items():
        print(f"  - {key}: {value}")
    print(f"Snapshot written to: {output}")
    return True


def generate_sample_config(output_path: str):
    """Generates a sample genesis.json configuration file."""
    # Generate some sample keys for demonstration
    owner_priv, owner_pub = generate_key_pair()
    owner = public_key_to_address(serialize_public_key(owner_pub)).hex()

    holder_priv, holder_pub = generate_key_pair()
    holder = public_key_to_address(serialize_public_key(holder_pub)).hex()

    genesis = {
        "owner": owner,
        "token_config": Config.default().to_dict(),
        "reference_token": {"name": "Binance USD", "symbol": "BUSD", "decimals": 18},
        "initial_liquidity": {"tokens": 500_000_000, "reference": 100_000},
        "pre_funded_accounts": [
            {"address": holder, "balance": 1_000_000, "balance_reference": 1_000}
        ],
        "excluded_from_fee": [],
        "excluded_from_reward": [],
    }

    with open(output_path, 'w') as f:
        json.dump(genesis, f, indent=2)

    print(f"\nGenerated sample genesis configuration at: {output_path}")
    print("Please review and edit this file before creating the deployment.")
    print("\nSample private keys (DO NOT USE IN PRODUCTION):")
    for address, private_key in ((owner, owner_priv), (holder, holder_priv)):
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        print(f"  - Address {address}: {pem.hex()}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reflection Token Genesis Tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Command to generate a sample config
    parser_sample = subparsers.add_parser("sample-config", help="Generate a sample genesis.json")
    parser_sample.add_argument("--output", type=str, default="genesis.json", help="Output file path")

    # Command to deploy and snapshot
    parser_create = subparsers.add_parser("create", help="Deploy the token from a config file")
    parser_create.add_argument("--config", type=str, default="genesis.json", help="Path to genesis config file")
    parser_create.add_argument("--output", type=str, required=True, help="Path for the msgpack snapshot")

    args = parser.parse_args(argv)

    if args.command == "sample-config":
        generate_sample_config(args.output)
    elif args.command == "create":
        create_genesis_snapshot(args.config, args.output)


if __name__ == '__main__':
    main()
