import mongomock
import pytest
from fastapi.testclient import TestClient

from database import DocumentStore
from payments import DemoGateway
from voice import VoiceOrderParser
from workflow import WorkflowCoordinator


class FakeBedrock:
    """Stands in for the bedrock-runtime client; replies with canned text."""

    def __init__(self, reply="[]", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def converse(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"output": {"message": {"role": "assistant", "content": [{"text": self.reply}]}}}


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    return DocumentStore(client["restaurant_test"])


@pytest.fixture
def coordinator(store):
    return WorkflowCoordinator(store)


@pytest.fixture
def table_id(coordinator):
    return coordinator.tables.create(1, 4)


@pytest.fixture
def line_a():
    return {"menu_item_id": "item-a", "name": "Item A", "quantity": 2, "price": 100}


@pytest.fixture
def bedrock():
    return FakeBedrock()


@pytest.fixture
def client(store, bedrock):
    import main

    main.app.state.store = store
    main.app.state.gateway = DemoGateway()
    main.app.state.voice_parser = VoiceOrderParser("test-model", client=bedrock)
    with TestClient(main.app) as c:
        yield c
    main.app.state.store = None
    main.app.state.gateway = None
    main.app.state.voice_parser = None
