import pytest

from app.backend.storage import InMemoryDeckStore
from helpers import SleepRecorder, build_pdf


@pytest.fixture
def store() -> InMemoryDeckStore:
    return InMemoryDeckStore()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def deck_pdf() -> bytes:
    lines = [
        "Acme Robotics - Seed Round",
        "We are building warehouse robots for mid-size retailers.",
        "The market for warehouse automation will reach 40B by 2030.",
        "Customers will pay 2000 USD per robot per month.",
    ]
    return build_pdf([lines, ["Team: two founders with logistics experience."]])
