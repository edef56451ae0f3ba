import pytest


@pytest.fixture
def anyio_backend():
    # The code under test is written against asyncio directly.
    return "asyncio"
