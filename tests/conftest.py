import pytest


@pytest.fixture(autouse=True)
def restore_default_dtype():
    """Runs may switch the global scalar type; restore it after each test."""
    from ctmpeps.core.tensor import get_default_dtype, set_default_dtype

    previous = get_default_dtype()
    yield
    set_default_dtype(previous)
