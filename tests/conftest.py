import pytest

from tailpool.contracts import Contract


@pytest.fixture(autouse=True)
def clean_contracts():
    """Forgets the contracts created by each test"""
    yield
    Contract.manager.clean_all()
