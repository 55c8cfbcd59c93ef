"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project root and src to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))

import pytest

from mostro.security.crypto_utils import generate_keypair_hex
from mostro.security.key_index_store import MemoryKeyIndexStore
from mostro.security.key_manager import KeyManager

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


@pytest.fixture
def mnemonic():
    return TEST_MNEMONIC


@pytest.fixture
def index_store():
    return MemoryKeyIndexStore()


@pytest.fixture
def key_manager(index_store):
    """Key manager initialized from the test mnemonic."""
    manager = KeyManager(index_store=index_store)
    manager.initialize(TEST_MNEMONIC)
    yield manager
    manager.clear()


@pytest.fixture
def alice():
    """(private_hex, public_hex)"""
    return generate_keypair_hex()


@pytest.fixture
def bob():
    return generate_keypair_hex()


@pytest.fixture
def mostro_keys():
    """Keypair of a simulated Mostro daemon."""
    return generate_keypair_hex()
