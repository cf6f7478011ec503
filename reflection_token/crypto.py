"""
Address derivation and hashing.
"""
import hashlib
import msgpack
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import serialization

ADDRESS_LENGTH = 20


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    from Crypto.Hash import keccak
    return keccak.new(digest_bits=256, data=data).digest()


def generate_key_pair() -> tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """Generates an ECDSA private/public key pair."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_key = private_key.public_key()
    return private_key, public_key


def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> str:
    """Serializes a public key object into PEM format (string)."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')


def deserialize_public_key(pem_data: str) -> ec.EllipticCurvePublicKey:
    """Deserializes a public key from a PEM formatted string."""
    return serialization.load_pem_public_key(pem_data.encode('utf-8'))


def public_key_to_address(public_key_pem: str) -> bytes:
    """Derives an account address from a public key PEM string."""
    public_key = deserialize_public_key(public_key_pem)
    der_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return hashlib.sha256(der_bytes).digest()[:ADDRESS_LENGTH]


def new_address() -> bytes:
    """Generate a fresh account address backed by a new key pair."""
    _, public_key = generate_key_pair()
    return public_key_to_address(serialize_public_key(public_key))


def contract_address(deployer: bytes, nonce: int) -> bytes:
    """Address of a contract deployed by ``deployer`` at ``nonce``."""
    encoded = msgpack.packb([deployer, nonce], use_bin_type=True)
    return generate_hash(encoded)[-ADDRESS_LENGTH:]


def sort_tokens(token_a: bytes, token_b: bytes) -> tuple[bytes, bytes]:
    if token_a == token_b:
        raise ValueError("Identical token addresses")
    return (token_a, token_b) if token_a < token_b else (token_b, token_a)


def compute_pair_address(factory: bytes, token_a: bytes, token_b: bytes) -> bytes:
    """Deterministic pair address for a token pair under ``factory``."""
    token0, token1 = sort_tokens(token_a, token_b)
    salt = generate_hash(token0 + token1)
    return generate_hash(b'\xff' + factory + salt)[-ADDRESS_LENGTH:]
