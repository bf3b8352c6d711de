import pytest

from classifieds import main
from classifieds.store import store


@pytest.fixture(autouse=True)
def reset_state():
    store.reset()
    main.uploader.reset()
    main.push_gateway.reset()
    yield
    store.reset()
