import pytest

from chat_relay.domain.models import ChatMessage, CompletionResult
from chat_relay.infrastructure.storage.json_store import JsonThreadStore
from chat_relay.session.summarizer import Summarizer


class TitleClient:
    name = "fake"

    def __init__(self, content="  Buried gold on Tortuga \n"):
        self.content = content
        self.requests = []

    async def complete(self, req):
        self.requests.append(req)
        return CompletionResult(model=req.model, content=self.content)


def word_counter(model):
    return lambda text: len(text.split())


@pytest.mark.asyncio
async def test_summarizer_trims_with_its_own_budget(tmp_path):
    store = JsonThreadStore(root=tmp_path)
    client = TitleClient()
    summarizer = Summarizer(store, client, model="gpt-4.1-nano", budget_tokens=10, counter_factory=word_counter)
    thread = await store.create_thread()
    context = [
        ChatMessage(role="user", content=" ".join(["old"] * 30)),
        ChatMessage(role="assistant", content="short"),
        ChatMessage(role="user", content="where"),
    ]

    updated = await summarizer.summarize(thread, context)

    assert updated.title == "Buried gold on Tortuga"
    sent = client.requests[0].messages
    assert sent[0].role == "system"
    assert [m.content for m in sent[1:]] == ["short", "where"]


@pytest.mark.asyncio
async def test_summarizer_skips_titled_thread(tmp_path):
    store = JsonThreadStore(root=tmp_path)
    client = TitleClient()
    summarizer = Summarizer(store, client, model="gpt-4.1-nano", budget_tokens=10, counter_factory=word_counter)
    thread = await store.create_thread(title="Kept")

    assert (await summarizer.summarize(thread, [ChatMessage(role="user", content="hi")])).title == "Kept"
    assert client.requests == []


@pytest.mark.asyncio
async def test_summarizer_blank_title_leaves_thread_untitled(tmp_path):
    store = JsonThreadStore(root=tmp_path)
    summarizer = Summarizer(store, TitleClient(content="   "), model="m", budget_tokens=10, counter_factory=word_counter)
    thread = await store.create_thread()

    assert (await summarizer.summarize(thread, [ChatMessage(role="user", content="hi")])).title is None
    assert (await store.get_thread(thread.id)).title is None
